from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

from app.config import is_production_mode, settings
from app.db.base import Base
from app.observability import log_event

_ALEMBIC_VERSION_TABLE = "alembic_version"


def _alembic_ini_path() -> Path:
    return Path(__file__).resolve().parents[2] / "alembic.ini"


def _alembic_config() -> Config:
    config = Config(str(_alembic_ini_path()))
    config.set_main_option("script_location", str(Path(__file__).resolve().parent / "migrations"))
    return config


def get_alembic_head_revision() -> str:
    script = ScriptDirectory.from_config(_alembic_config())
    return script.get_current_head()


def get_current_db_revision(engine: Engine) -> Optional[str]:
    if not inspect(engine).has_table(_ALEMBIC_VERSION_TABLE):
        return None

    with engine.connect() as connection:
        result = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1"))
        return result.scalar_one_or_none()


def assert_db_is_up_to_date(engine: Engine) -> None:
    """Refuse to serve traffic against a schema the code was not written for."""
    current = get_current_db_revision(engine)
    head = get_alembic_head_revision()
    if current != head:
        log_event(
            "schema_revision_mismatch",
            detail=f"current={current} head={head}",
            level=logging.ERROR,
        )
        raise RuntimeError("Database schema not up to date. Run: alembic upgrade head")


def maybe_create_schema(engine: Engine) -> None:
    if not settings.auto_create_schema:
        return
    if is_production_mode():
        raise RuntimeError(
            "NEARCART_AUTO_CREATE_SCHEMA must be disabled in NEARCART_APP_MODE=production"
        )

    Base.metadata.create_all(bind=engine)
    log_event("schema_created", detail=str(engine.url.render_as_string(hide_password=True)))
