from __future__ import annotations

import logging
from pathlib import Path

from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy.engine import Engine

from zapcart.core.config import DATABASE_URL, ENV_NORMALIZED, IS_DEV, IS_PROD

logger = logging.getLogger(__name__)


class StartupCheckError(RuntimeError):
    pass


def validate_database_environment() -> None:
    # carrinhos concorrentes dependem de índices únicos e de transações reais
    if IS_PROD and DATABASE_URL.startswith("sqlite"):
        logger.critical("Banco SQLite recusado em produção")
        raise StartupCheckError("SQLite não é aceito em produção")


def _script_heads(alembic_config_path: Path) -> set[str]:
    if not alembic_config_path.exists():
        logger.critical("alembic.ini não encontrado em %s", alembic_config_path)
        raise StartupCheckError(f"alembic.ini ausente: {alembic_config_path}")
    scripts = ScriptDirectory.from_config(Config(str(alembic_config_path)))
    return set(scripts.get_heads())


def _database_heads(engine: Engine) -> set[str]:
    with engine.connect() as connection:
        return set(MigrationContext.configure(connection).get_current_heads())


def ensure_migrations_applied(*, engine: Engine, alembic_config_path: Path) -> None:
    """Só sobe fora de dev/test com o banco exatamente no head do Alembic."""
    if IS_DEV or ENV_NORMALIZED == "test":
        logger.info("Checagem de migrações ignorada (ENV=%s)", ENV_NORMALIZED)
        return

    expected = _script_heads(alembic_config_path)
    current = _database_heads(engine)
    if not current:
        logger.critical("Banco sem revisão do Alembic; rode 'alembic upgrade head'")
        raise StartupCheckError("banco sem migrações aplicadas")
    if current != expected:
        logger.critical("Migrações pendentes: banco=%s esperado=%s", sorted(current), sorted(expected))
        raise StartupCheckError("migrações pendentes")

    logger.info("Migrações em dia (head=%s)", ",".join(sorted(current)))
