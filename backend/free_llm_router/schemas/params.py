from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

USE_CASES = ("chat", "vision", "tools", "longContext", "reasoning")
SORT_KEYS = ("contextLength", "maxOutput", "capable", "leastIssues", "newest")
ISSUE_TYPES = ("rate_limited", "unavailable", "error")

TIME_RANGE_SECONDS: dict[str, int | None] = {
    "15m": 15 * 60,
    "30m": 30 * 60,
    "1h": 60 * 60,
    "6h": 6 * 60 * 60,
    "24h": 24 * 60 * 60,
    "7d": 7 * 24 * 60 * 60,
    "30d": 30 * 24 * 60 * 60,
    "all": None,
}

DEFAULT_SORT = "contextLength"
DEFAULT_TIME_RANGE = "30m"
MIN_TOP_N = 1
MAX_TOP_N = 100
MAX_EXCLUDED_MODELS = 50


def validate_use_cases(value: str | list | None) -> list[str]:
    if value is None:
        return []
    tokens = value.split(",") if isinstance(value, str) else value
    result: list[str] = []
    for token in tokens:
        if not isinstance(token, str):
            continue
        token = token.strip()
        if token in USE_CASES and token not in result:
            result.append(token)
    return result


def validate_sort(value: str | None) -> str:
    if value in SORT_KEYS:
        return value
    return DEFAULT_SORT


def validate_time_range(value: str | None, allow_all: bool = True) -> str:
    if value in TIME_RANGE_SECONDS and (allow_all or value != "all"):
        return value
    return DEFAULT_TIME_RANGE


def _parse_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def validate_top_n(value: Any) -> int | None:
    number = _parse_number(value)
    if number is None:
        return None
    return max(MIN_TOP_N, min(MAX_TOP_N, int(number)))


def validate_max_error_rate(value: Any) -> float | None:
    number = _parse_number(value)
    if number is None:
        return None
    return max(0.0, min(100.0, number))


def parse_bool(value: str | None) -> bool | None:
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    return None


def sanitize_excluded_ids(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    result: list[str] = []
    for item in value:
        if not isinstance(item, str):
            continue
        item = item.strip()
        if item and item not in result:
            result.append(item)
        if len(result) >= MAX_EXCLUDED_MODELS:
            break
    return result


class ApiKeyPreferences(BaseModel):
    """Per-key saved defaults for the model list endpoints.

    Every field has a default, so a stored blob read back always carries
    the full set of keys.
    """

    model_config = ConfigDict(populate_by_name=True)

    use_cases: list[str] = Field(default_factory=list, alias="useCases")
    sort: str = DEFAULT_SORT
    top_n: int = Field(default=5, alias="topN")
    max_error_rate: float | None = Field(default=None, alias="maxErrorRate")
    time_range: str = Field(default=DEFAULT_TIME_RANGE, alias="timeRange")
    my_reports: bool = Field(default=True, alias="myReports")
    exclude_model_ids: list[str] = Field(default_factory=list, alias="excludeModelIds")

    @field_validator("use_cases", mode="before")
    @classmethod
    def _use_cases(cls, value):
        return validate_use_cases(value)

    @field_validator("sort", mode="before")
    @classmethod
    def _sort(cls, value):
        return validate_sort(value)

    @field_validator("top_n", mode="before")
    @classmethod
    def _top_n(cls, value):
        top_n = validate_top_n(value)
        return 5 if top_n is None else top_n

    @field_validator("max_error_rate", mode="before")
    @classmethod
    def _max_error_rate(cls, value):
        return validate_max_error_rate(value)

    @field_validator("time_range", mode="before")
    @classmethod
    def _time_range(cls, value):
        return validate_time_range(value)

    @field_validator("exclude_model_ids", mode="before")
    @classmethod
    def _exclude_model_ids(cls, value):
        return sanitize_excluded_ids(value)

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True)


class PreferencesUpdateRequest(BaseModel):
    api_key_id: str = Field(alias="apiKeyId", min_length=1, max_length=36)
    preferences: dict = Field(default_factory=dict)


@dataclass
class ModelParams:
    use_cases: list[str] = field(default_factory=list)
    sort: str = DEFAULT_SORT
    top_n: int | None = None
    max_error_rate: float | None = None
    time_range: str = DEFAULT_TIME_RANGE
    my_reports: bool = False
    exclude_model_ids: list[str] = field(default_factory=list)


def _first(query: Mapping[str, str], *names: str) -> str | None:
    for name in names:
        value = query.get(name)
        if value is not None:
            return value
    return None


def parse_model_params(
    query: Mapping[str, str],
    preferences: ApiKeyPreferences | None = None,
) -> ModelParams:
    """Resolve request parameters: query string, then saved preferences, then defaults."""
    params = ModelParams()
    if preferences is not None:
        params = ModelParams(
            use_cases=list(preferences.use_cases),
            sort=preferences.sort,
            top_n=preferences.top_n,
            max_error_rate=preferences.max_error_rate,
            time_range=preferences.time_range,
            my_reports=preferences.my_reports,
            exclude_model_ids=list(preferences.exclude_model_ids),
        )

    raw_use_cases = _first(query, "useCases", "useCase")
    if raw_use_cases is not None:
        params.use_cases = validate_use_cases(raw_use_cases)

    raw_sort = query.get("sort")
    if raw_sort is not None:
        params.sort = validate_sort(raw_sort)

    top_n = validate_top_n(query.get("topN"))
    if top_n is not None:
        params.top_n = top_n

    max_error_rate = validate_max_error_rate(query.get("maxErrorRate"))
    if max_error_rate is not None:
        params.max_error_rate = max_error_rate

    raw_time_range = _first(query, "timeRange", "timeWindow")
    if raw_time_range is not None:
        params.time_range = validate_time_range(raw_time_range)

    my_reports = parse_bool(_first(query, "myReports", "userOnly"))
    if my_reports is not None:
        params.my_reports = my_reports

    if parse_bool(query.get("_clearExcludedModels")):
        params.exclude_model_ids = []

    return params
