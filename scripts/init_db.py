"""Apply the raffle schema migrations and list the resulting tables."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from fairdraw.config import get_settings
from fairdraw.db.engine import make_engine

logger = logging.getLogger("fairdraw.scripts.init_db")


def upgrade_db(target_revision: str = "head") -> None:
    """Apply Alembic migrations up to the requested revision."""
    project_root = Path(__file__).resolve().parents[1]
    alembic_cfg = Config(str(project_root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
    command.upgrade(alembic_cfg, target_revision)


def print_tables() -> None:
    """Inspect the configured database and print the raffle tables."""
    engine = make_engine()
    tables = sorted(inspect(engine).get_table_names())
    print(f"Tables in {engine.url.render_as_string(hide_password=True)}: {', '.join(tables)}")


def main(argv: list[str]) -> None:
    """Upgrade to ``argv[0]`` (default ``head``) and report the schema."""
    logging.basicConfig(level=logging.INFO)
    revision = argv[0] if argv else "head"
    logger.info(f"Upgrading {get_settings().safe_db_url} to revision {revision}")
    upgrade_db(revision)
    print_tables()


if __name__ == "__main__":
    main(sys.argv[1:])
