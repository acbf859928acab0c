"""Administrative commands: ``python -m servicequeue.cli init-db --service REG:Registrar``."""

from __future__ import annotations

import argparse
import asyncio
import logging
from collections.abc import Sequence

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from servicequeue.core.config import get_settings
from servicequeue.core.logging import configure_logging
from servicequeue.main import _to_asyncpg_dsn
from servicequeue.queue.repository import QueueRepository

logger = logging.getLogger("servicequeue.cli")


def parse_service(value: str) -> tuple[str, str]:
    code, sep, name = value.partition(":")
    code, name = code.strip(), name.strip()
    if not sep or not code or not name:
        raise argparse.ArgumentTypeError(f"expected CODE:NAME, got {value!r}")
    return code, name


async def init_db(dsn: str, services: Sequence[tuple[str, str]]) -> list[str]:
    """Create the schema and add any ``services`` whose code is not present yet.

    Returns the codes that were created.
    """

    engine = create_async_engine(_to_asyncpg_dsn(dsn), future=True)
    created: list[str] = []
    try:
        repository = QueueRepository(async_sessionmaker(engine, expire_on_commit=False), engine=engine)
        await repository.ensure_schema()
        async with repository.transaction() as tx:
            for code, name in services:
                if await tx.get_service_by_code(code) is not None:
                    logger.info("Service %s already exists", code)
                    continue
                await tx.create_service(code=code, name=name)
                created.append(code)
    finally:
        await engine.dispose()
    return created


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="servicequeue")
    commands = parser.add_subparsers(dest="command", required=True)

    init = commands.add_parser("init-db", help="create tables and seed services")
    init.add_argument(
        "--service",
        dest="services",
        action="append",
        default=[],
        type=parse_service,
        metavar="CODE:NAME",
        help="service to create; may be repeated",
    )
    init.add_argument("--dsn", default=None, help="database DSN (defaults to DATABASE_DSN)")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings)

    if args.command == "init-db":
        created = asyncio.run(init_db(args.dsn or settings.database_dsn, args.services))
        logger.info("Schema ready; created %d service(s): %s", len(created), ", ".join(created) or "-")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
