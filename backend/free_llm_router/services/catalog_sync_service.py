from __future__ import annotations

import json
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy import func, or_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker

from free_llm_router.core.config import settings
from free_llm_router.core.time_utils import as_utc, isoformat_z, utcnow
from free_llm_router.models.availability_snapshot import ModelAvailabilitySnapshot
from free_llm_router.models.free_model import FreeModel
from free_llm_router.models.sync_meta import SyncMeta
from free_llm_router.services.openrouter_client import fetch_openrouter_models, is_free_model

MODELS_LAST_UPDATED_KEY = "models_last_updated"
SYNC_LOCK_KEY = "sync_in_progress"
DEACTIVATION_FLOOR = 0.5

_CATALOG_UPDATE_FIELDS = (
    "name",
    "context_length",
    "max_completion_tokens",
    "description",
    "modality",
    "input_modalities_json",
    "output_modalities_json",
    "supported_parameters_json",
    "supported_parameter_count",
    "is_moderated",
    "is_active",
    "last_seen_at",
)

FetchModels = Callable[[], list[dict]]


@dataclass
class SyncResult:
    total_api_models: int = 0
    free_models_found: int = 0
    inserted: int = 0
    updated: int = 0
    marked_inactive: int = 0
    error: str | None = None
    skipped: bool = False

    def to_dict(self) -> dict:
        data = {
            "totalApiModels": self.total_api_models,
            "freeModelsFound": self.free_models_found,
            "inserted": self.inserted,
            "updated": self.updated,
            "markedInactive": self.marked_inactive,
        }
        if self.error:
            data["error"] = self.error
        if self.skipped:
            data["skipped"] = True
        return data


@dataclass
class Freshness:
    is_fresh: bool
    is_critically_stale: bool
    last_updated: datetime | None
    age_seconds: float | None


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Unsupported database dialect for upserts: {dialect}")


def _upsert(db: Session, model, values: dict, update_fields: tuple[str, ...] | list[str]) -> None:
    insert = _insert_for(db)
    stmt = insert(model).values(**values)
    primary_key = [column.name for column in model.__table__.primary_key.columns]
    stmt = stmt.on_conflict_do_update(
        index_elements=primary_key,
        set_={field: stmt.excluded[field] for field in update_fields},
    )
    db.execute(stmt)


def _as_list(value) -> list | None:
    if not isinstance(value, list):
        return None
    return [item for item in value if isinstance(item, str)]


def _as_int(value) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _dump(value: list | None) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False)


def _catalog_values(model: dict, now: datetime) -> dict:
    top_provider = model.get("top_provider") or {}
    architecture = model.get("architecture") or {}
    supported = _as_list(model.get("supported_parameters"))
    is_moderated = top_provider.get("is_moderated")
    return {
        "id": model["id"],
        "name": model.get("name") or model["id"],
        "context_length": _as_int(model.get("context_length")),
        "max_completion_tokens": _as_int(top_provider.get("max_completion_tokens")),
        "description": model.get("description"),
        "modality": architecture.get("modality"),
        "input_modalities_json": _dump(_as_list(architecture.get("input_modalities"))),
        "output_modalities_json": _dump(_as_list(architecture.get("output_modalities"))),
        "supported_parameters_json": _dump(supported),
        "supported_parameter_count": len(supported or []),
        "is_moderated": is_moderated if isinstance(is_moderated, bool) else None,
        "is_active": True,
        "last_seen_at": now,
        "created_at": now,
    }


def _set_meta(db: Session, key: str, value: str, now: datetime) -> None:
    _upsert(db, SyncMeta, {"key": key, "value": value, "updated_at": now}, ("value", "updated_at"))


def get_last_updated(db: Session) -> datetime | None:
    row = db.query(SyncMeta).filter(SyncMeta.key == MODELS_LAST_UPDATED_KEY).first()
    if not row:
        return None
    return as_utc(row.updated_at)


def check_models_freshness(db: Session, now: datetime | None = None) -> Freshness:
    last_updated = get_last_updated(db)
    if last_updated is None:
        return Freshness(is_fresh=False, is_critically_stale=True, last_updated=None, age_seconds=None)
    age = ((now or utcnow()) - last_updated).total_seconds()
    return Freshness(
        is_fresh=age <= settings.stale_threshold_seconds,
        is_critically_stale=age > settings.critical_stale_threshold_seconds,
        last_updated=last_updated,
        age_seconds=age,
    )


def try_acquire_sync_lock(
    db: Session,
    now: datetime | None = None,
    lock_seconds: int | None = None,
) -> bool:
    now = now or utcnow()
    expired_before = now - timedelta(seconds=lock_seconds or settings.sync_lock_seconds)
    taken = (
        db.query(SyncMeta)
        .filter(
            SyncMeta.key == SYNC_LOCK_KEY,
            or_(
                SyncMeta.value.is_(None),
                SyncMeta.value != "true",
                SyncMeta.updated_at < expired_before,
            ),
        )
        .update({"value": "true", "updated_at": now}, synchronize_session=False)
    )
    if not taken:
        insert = _insert_for(db)
        stmt = (
            insert(SyncMeta)
            .values(key=SYNC_LOCK_KEY, value="true", updated_at=now)
            .on_conflict_do_nothing(index_elements=["key"])
        )
        taken = db.execute(stmt).rowcount
    db.commit()
    return taken == 1


def release_sync_lock(db: Session) -> None:
    db.query(SyncMeta).filter(SyncMeta.key == SYNC_LOCK_KEY).update(
        {"value": "false", "updated_at": utcnow()}, synchronize_session=False
    )
    db.commit()


def snapshot_day(now: datetime) -> datetime:
    return as_utc(now).replace(hour=0, minute=0, second=0, microsecond=0)


def record_availability_snapshots(db: Session, model_ids: list[str], now: datetime) -> None:
    day = snapshot_day(now)
    day_label = day.strftime("%Y-%m-%d")
    for model_id in model_ids:
        _upsert(
            db,
            ModelAvailabilitySnapshot,
            {
                "id": f"{model_id}_{day_label}",
                "model_id": model_id,
                "snapshot_date": day,
                "is_available": True,
                "created_at": now,
            },
            ("is_available",),
        )


def sync_models(
    db: Session,
    fetch_models: FetchModels = fetch_openrouter_models,
    now: datetime | None = None,
) -> SyncResult:
    """Mirror the upstream free model list into the catalog.

    Never raises: failures are logged, rolled back and reported in
    ``SyncResult.error``.
    """
    result = SyncResult()
    now = now or utcnow()
    try:
        all_models = fetch_models()
        result.total_api_models = len(all_models)
        free_models = {model["id"]: model for model in all_models if is_free_model(model)}
        result.free_models_found = len(free_models)

        existing_ids = {row.id for row in db.query(FreeModel.id).all()}
        previously_active = (
            db.query(func.count(FreeModel.id)).filter(FreeModel.is_active.is_(True)).scalar() or 0
        )

        seen_ids: list[str] = []
        for model_id, model in free_models.items():
            _upsert(db, FreeModel, _catalog_values(model, now), _CATALOG_UPDATE_FIELDS)
            seen_ids.append(model_id)
            if model_id in existing_ids:
                result.updated += 1
            else:
                result.inserted += 1

        if seen_ids and (len(seen_ids) >= previously_active * DEACTIVATION_FLOOR or previously_active == 0):
            result.marked_inactive = (
                db.query(FreeModel)
                .filter(FreeModel.is_active.is_(True), FreeModel.id.notin_(seen_ids))
                .update({"is_active": False}, synchronize_session=False)
            )
        elif seen_ids:
            logger.warning(
                "Skipping deactivation: saw {} of {} active models",
                len(seen_ids),
                previously_active,
            )

        _set_meta(db, MODELS_LAST_UPDATED_KEY, isoformat_z(now), now)
        record_availability_snapshots(db, seen_ids, now)
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.exception("Model sync failed")
        failed = SyncResult(
            total_api_models=result.total_api_models,
            free_models_found=result.free_models_found,
        )
        failed.error = str(exc) or exc.__class__.__name__
        return failed

    logger.info(
        "Model sync done: {} upstream, {} free, {} inserted, {} updated, {} deactivated",
        result.total_api_models,
        result.free_models_found,
        result.inserted,
        result.updated,
        result.marked_inactive,
    )
    return result


class _Flight:
    def __init__(self):
        self.done = threading.Event()
        self.result: SyncResult | None = None


class SyncCoordinator:
    """Runs catalog syncs with one in-flight run per process.

    Callers that arrive while a sync is running wait for it and receive
    the same result. Across processes the ``sync_in_progress`` row in
    ``sync_meta`` keeps a second run from starting until the first one
    finishes or its lock expires.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        fetch_models: FetchModels = fetch_openrouter_models,
        lock_seconds: int | None = None,
    ):
        self._session_factory = session_factory
        self._fetch_models = fetch_models
        self._lock_seconds = lock_seconds
        self._lock = threading.Lock()
        self._flight: _Flight | None = None
        self.runs = 0

    def run(self) -> SyncResult:
        with self._lock:
            flight = self._flight
            leader = flight is None
            if leader:
                flight = _Flight()
                self._flight = flight

        if not leader:
            flight.done.wait()
            return flight.result or SyncResult(error="Sync did not complete")

        try:
            flight.result = self._run_once()
        finally:
            with self._lock:
                self._flight = None
            flight.done.set()
        return flight.result

    def _run_once(self) -> SyncResult:
        self.runs += 1
        db = self._session_factory()
        try:
            if not try_acquire_sync_lock(db, lock_seconds=self._lock_seconds):
                logger.info("Sync already in progress in another process, skipping")
                return SyncResult(skipped=True)
            try:
                return sync_models(db, self._fetch_models)
            finally:
                release_sync_lock(db)
        except Exception as exc:
            db.rollback()
            logger.exception("Sync coordination failed")
            return SyncResult(error=str(exc) or exc.__class__.__name__)
        finally:
            db.close()

    def ensure_fresh(
        self,
        db: Session,
        threshold_seconds: int | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Sync before answering when the catalog is older than the threshold."""
        threshold = settings.stale_threshold_seconds if threshold_seconds is None else threshold_seconds
        freshness = check_models_freshness(db, now)
        if freshness.age_seconds is not None and freshness.age_seconds <= threshold:
            return False
        logger.info("Catalog stale (age={}s), refreshing", freshness.age_seconds)
        result = self.run()
        db.expire_all()
        return result.error is None and not result.skipped
