from __future__ import annotations

from collections.abc import Iterable

from loguru import logger
from sqlalchemy.engine import Engine


# Columns added after the first public release; older SQLite files lack them.
_SQLITE_COMPAT_COLUMNS: dict[str, dict[str, str]] = {
    "free_models": {
        "max_completion_tokens": "INTEGER",
        "input_modalities_json": "TEXT",
        "output_modalities_json": "TEXT",
        "supported_parameters_json": "TEXT",
        "supported_parameter_count": "INTEGER",
        "is_moderated": "BOOLEAN",
        "priority": "INTEGER",
    },
    "model_feedback": {
        "is_success": "BOOLEAN",
        "request_id": "VARCHAR(64)",
        "api_key_id": "VARCHAR(36)",
    },
    "api_keys": {
        "metadata_json": "TEXT",
        "last_request_at": "DATETIME",
    },
}


def _existing_columns(conn, table_name: str) -> set[str]:
    rows = conn.exec_driver_sql(f"PRAGMA table_info({table_name})").all()
    return {row[1] for row in rows}


def _add_missing_columns(
    conn,
    table_name: str,
    missing_columns: Iterable[str],
    column_types: dict[str, str],
) -> None:
    for column_name in missing_columns:
        column_type = column_types[column_name]
        conn.exec_driver_sql(
            f"ALTER TABLE {table_name} ADD COLUMN {column_name} {column_type}"
        )
        logger.info("Added column {}.{}", table_name, column_name)
        if table_name == "free_models" and column_name == "supported_parameter_count":
            conn.exec_driver_sql(
                "UPDATE free_models SET supported_parameter_count = 0 WHERE supported_parameter_count IS NULL"
            )
        if table_name == "free_models" and column_name == "priority":
            conn.exec_driver_sql("UPDATE free_models SET priority = 100 WHERE priority IS NULL")
        if table_name == "model_feedback" and column_name == "is_success":
            conn.exec_driver_sql("UPDATE model_feedback SET is_success = 0 WHERE is_success IS NULL")
        if table_name == "api_keys" and column_name == "metadata_json":
            conn.exec_driver_sql("UPDATE api_keys SET metadata_json = '{}' WHERE metadata_json IS NULL")
        if column_name.endswith("_id"):
            conn.exec_driver_sql(
                f"CREATE INDEX IF NOT EXISTS idx_{table_name}_{column_name} ON {table_name} ({column_name})"
            )


def run_startup_migrations(engine: Engine, db_url: str) -> None:
    if not db_url.startswith("sqlite"):
        return

    with engine.begin() as conn:
        for table_name, column_types in _SQLITE_COMPAT_COLUMNS.items():
            existing = _existing_columns(conn, table_name)
            if not existing:
                continue
            missing = [column for column in column_types if column not in existing]
            if missing:
                _add_missing_columns(conn, table_name, missing, column_types)
