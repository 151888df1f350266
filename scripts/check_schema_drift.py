"""Compare the raffle ORM metadata with the live database schema.

Exit codes: 0 no drift, 1 differences found, 2 the check itself failed.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional

from alembic.autogenerate import api as ag_api
from alembic.runtime.migration import MigrationContext
from sqlalchemy.exc import SQLAlchemyError

from fairdraw.db.engine import make_engine
from fairdraw.models import Base

logger = logging.getLogger("fairdraw.scripts.check_schema_drift")


def _describe(ops, indent: int = 0) -> list[str]:
    lines: list[str] = []
    for op in ops:
        lines.append(f"{'  ' * indent}- {op}")
        nested = getattr(op, "ops", None)
        if nested:
            lines.extend(_describe(nested, indent + 1))
    return lines


def find_drift(database_url: Optional[str] = None) -> list[str]:
    """Return a description of every difference between models and schema."""
    engine = make_engine(database_url)
    with engine.connect() as connection:
        context = MigrationContext.configure(
            connection=connection,
            opts={
                "compare_type": True,
                "compare_server_default": True,
                "render_as_batch": connection.dialect.name == "sqlite",
            },
        )
        upgrade_ops = ag_api.produce_migrations(context, Base.metadata).upgrade_ops
    if upgrade_ops is None or upgrade_ops.is_empty():
        return []
    return _describe(upgrade_ops.ops or [])


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--url", help="Database URL; defaults to DB_URL")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)

    try:
        differences = find_drift(args.url)
    except SQLAlchemyError as exc:
        logger.error(f"Schema drift check failed: {exc}")
        return 2
    if not differences:
        logger.info("Schema drift check: OK (no differences)")
        return 0
    print("Schema drift check: FAILED. Differences detected:", file=sys.stderr)
    for line in differences:
        print(line, file=sys.stderr)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
