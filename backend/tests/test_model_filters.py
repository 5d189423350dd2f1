import itertools
from datetime import datetime, timedelta, timezone

import pytest

from conftest import seed_catalog, upstream_model
from free_llm_router.models.free_model import FreeModel
from free_llm_router.schemas.params import SORT_KEYS, USE_CASES
from free_llm_router.services.catalog_service import get_filtered_models, query_models
from free_llm_router.services.feedback_service import submit_feedback
from free_llm_router.services.model_filters import (
    SORT_CRITERIA,
    USE_CASE_CRITERIA,
    filter_models_by_use_case,
    get_sort_value,
    matches_use_case,
    sort_models,
)

CATALOG = [
    upstream_model(
        "m/alpha", context_length=128000, max_completion_tokens=4096,
        supported_parameters=["tools", "temperature"],
    ),
    upstream_model(
        "m/beta", context_length=32000, modality="text+image->text",
        input_modalities=["text", "image"],
        supported_parameters=["reasoning", "tools", "temperature", "top_p"],
    ),
    upstream_model(
        "m/gamma", context_length=None, modality=None, input_modalities=[],
        output_modalities=[], supported_parameters=[],
    ),
    upstream_model(
        "m/delta", context_length=128000, modality="text->image",
        output_modalities=["image"], supported_parameters=["include_reasoning"],
    ),
    upstream_model(
        "m/epsilon", context_length=200000, supported_parameters=[], max_completion_tokens=None,
    ),
    upstream_model(
        "m/zeta", context_length=32000, modality="image->text",
        input_modalities=["image"], supported_parameters=["tools"], max_completion_tokens=4096,
    ),
    upstream_model(
        "m/eta", context_length=100000, supported_parameters=["include_reasoning", "tools"],
    ),
    upstream_model(
        "m/theta", context_length=99999, supported_parameters=["includeXreasoning", "toolsy"],
    ),
]


def _model(**overrides) -> dict:
    base = {
        "id": "x",
        "context_length": None,
        "max_completion_tokens": None,
        "modality": None,
        "input_modalities": None,
        "output_modalities": None,
        "supported_parameters": None,
        "created_at": None,
    }
    base.update(overrides)
    return base


@pytest.fixture
def catalog(db):
    now = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
    seed_catalog(db, CATALOG, now=datetime.now(timezone.utc))
    created = {
        "m/alpha": now - timedelta(days=3),
        "m/beta": now - timedelta(days=1),
        "m/delta": now - timedelta(days=1),
        "m/zeta": now,
    }
    for model_id, created_at in created.items():
        db.query(FreeModel).filter(FreeModel.id == model_id).update({"created_at": created_at})
    db.commit()

    for _ in range(2):
        submit_feedback(db, "m/alpha", False, "error", None, source="user-1")
        submit_feedback(db, "m/delta", False, "unavailable", None, source="user-2")
    submit_feedback(db, "m/beta", False, "rate_limited", None, source="user-1")
    submit_feedback(db, "m/epsilon", True, None, None, source="user-1")
    return db


def test_use_case_predicates_handle_missing_fields():
    empty = _model()
    for use_case in USE_CASES:
        assert matches_use_case(empty, use_case) is False

    assert matches_use_case(_model(modality="text->text"), "chat")
    assert matches_use_case(_model(output_modalities=["text"]), "chat")
    assert matches_use_case(_model(input_modalities=["text", "image"]), "vision")
    assert matches_use_case(_model(supported_parameters=["tools"]), "tools")
    assert matches_use_case(_model(context_length=100000), "longContext")
    assert not matches_use_case(_model(context_length=99999), "longContext")
    assert matches_use_case(_model(supported_parameters=["include_reasoning"]), "reasoning")
    assert not matches_use_case(_model(supported_parameters=["toolsy"]), "tools")


def test_filter_is_and_across_tags_and_order_independent():
    models = [
        _model(id="a", modality="text->text", supported_parameters=["tools"]),
        _model(id="b", modality="text->text"),
        _model(id="c", input_modalities=["image"], supported_parameters=["tools"]),
    ]
    assert [m["id"] for m in filter_models_by_use_case(models, ["chat", "tools"])] == ["a"]
    assert filter_models_by_use_case(models, []) == models

    for tags in itertools.permutations(["chat", "tools", "vision"], 2):
        forward = {m["id"] for m in filter_models_by_use_case(models, list(tags))}
        backward = {m["id"] for m in filter_models_by_use_case(models, list(reversed(tags)))}
        assert forward == backward


def test_sort_is_deterministic_with_tie_breakers():
    models = [
        _model(id="b", context_length=1000, supported_parameters=["a", "b"]),
        _model(id="a", context_length=1000, supported_parameters=["c", "d"]),
        _model(id="c", context_length=5000, supported_parameters=["x"]),
        _model(id="d"),
    ]
    for key in SORT_KEYS:
        first = sort_models(models, key)
        second = sort_models(list(reversed(models)), key)
        assert [m["id"] for m in first] == [m["id"] for m in second]

    assert [m["id"] for m in sort_models(models, "capable")] == ["a", "b", "c", "d"]
    assert [m["id"] for m in sort_models(models, "unknown")] == ["c", "a", "b", "d"]


def test_sort_values():
    created = datetime(2025, 1, 1, tzinfo=timezone.utc)
    model = _model(
        context_length=4096,
        max_completion_tokens=1024,
        supported_parameters=["tools", "reasoning"],
        created_at=created,
        issue_count=3,
    )
    assert get_sort_value(model, "contextLength") == 4096
    assert get_sort_value(model, "maxOutput") == 1024
    assert get_sort_value(model, "capable") == 2
    assert get_sort_value(model, "leastIssues") == 3
    assert get_sort_value(model, "newest") == created.timestamp() * 1000
    assert get_sort_value(_model(), "newest") == 0


def test_least_issues_sorts_ascending():
    models = [
        _model(id="noisy", issue_count=5, context_length=10),
        _model(id="quiet", issue_count=0, context_length=10),
        _model(id="some", issue_count=1, context_length=10),
    ]
    assert [m["id"] for m in sort_models(models, "leastIssues")] == ["quiet", "some", "noisy"]


def test_like_wildcards_do_not_leak_into_sql_filters(catalog):
    reasoning = [m["id"] for m in query_models(catalog, ["reasoning"])]
    assert "m/theta" not in reasoning
    assert set(reasoning) == {"m/beta", "m/delta", "m/eta"}
    tools = {m["id"] for m in query_models(catalog, ["tools"])}
    assert tools == {"m/alpha", "m/beta", "m/zeta", "m/eta"}


_TAG_SUBSETS = [
    list(combo)
    for size in range(len(USE_CASES) + 1)
    for combo in itertools.combinations(USE_CASES, size)
]


@pytest.mark.parametrize("sort_key", SORT_KEYS)
@pytest.mark.parametrize("use_cases", _TAG_SUBSETS, ids=lambda tags: "+".join(tags) or "none")
def test_sql_and_in_memory_paths_agree(catalog, use_cases, sort_key):
    in_memory, _ = get_filtered_models(catalog, use_cases, sort_key)
    in_sql = query_models(catalog, use_cases, sort_key)
    assert [m["id"] for m in in_sql] == [m["id"] for m in in_memory]


def test_paths_agree_for_user_scoped_issue_counts(catalog):
    in_memory, _ = get_filtered_models(catalog, [], "leastIssues", user_id="user-1")
    in_sql = query_models(catalog, [], "leastIssues", user_id="user-1")
    assert [m["id"] for m in in_sql] == [m["id"] for m in in_memory]
    # m/delta's reports came from another user, so it ties with the quiet models
    assert [m["id"] for m in in_sql][-2:] == ["m/beta", "m/alpha"]


def test_criteria_tables_cover_every_request_enum():
    assert set(USE_CASE_CRITERIA) == set(USE_CASES)
    assert set(SORT_CRITERIA) == set(SORT_KEYS)


def test_unknown_tags_are_ignored_on_both_paths(catalog):
    models = [_model(id="a", modality="text->text"), _model(id="b", input_modalities=["image"])]
    assert [m["id"] for m in filter_models_by_use_case(models, ["chat", "bogus"])] == ["a"]
    assert filter_models_by_use_case(models, ["bogus"]) == models
    assert matches_use_case(_model(), "bogus")

    chat_only = [m["id"] for m in query_models(catalog, ["chat"])]
    in_memory, _ = get_filtered_models(catalog, ["chat", "bogus"], "contextLength")
    in_sql = query_models(catalog, ["chat", "bogus"], "contextLength")
    assert [m["id"] for m in in_memory] == chat_only
    assert [m["id"] for m in in_sql] == chat_only


def test_list_membership_ignores_escaped_quotes_in_sql(db):
    seed_catalog(
        db,
        [
            upstream_model("m/quoted", supported_parameters=['x"tools', 'reasoning" extra']),
            upstream_model("m/only", supported_parameters=["tools"]),
            upstream_model("m/middle", supported_parameters=["a", "tools", "b"]),
            upstream_model("m/last", supported_parameters=["temperature", "include_reasoning"]),
        ],
        now=datetime.now(timezone.utc),
    )
    for tags in (["tools"], ["reasoning"]):
        in_memory, _ = get_filtered_models(db, tags, "contextLength")
        in_sql = query_models(db, tags, "contextLength")
        assert [m["id"] for m in in_sql] == [m["id"] for m in in_memory]

    assert {m["id"] for m in query_models(db, ["tools"])} == {"m/only", "m/middle"}
    assert {m["id"] for m in query_models(db, ["reasoning"])} == {"m/last"}
