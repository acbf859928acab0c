from __future__ import annotations

import logging

import pytest

from servicequeue.core.config import Settings
from servicequeue.core.logging import configure_logging, init_tracer, logger_levels, parse_otlp_headers


@pytest.fixture(autouse=True)
def restore_logger_levels():
    names = ("servicequeue", "sqlalchemy.engine", "httpx")
    saved = {name: logging.getLogger(name).level for name in names}
    yield
    for name, level in saved.items():
        logging.getLogger(name).setLevel(level)


def test_database_echo_drives_sql_logger():
    configure_logging(Settings(database_echo=True))
    assert logging.getLogger("sqlalchemy.engine").level == logging.INFO

    configure_logging(Settings(database_echo=False))
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING


def test_queue_loggers_follow_log_level():
    logger = configure_logging(Settings(log_level="debug"))

    assert logger.name == "servicequeue"
    assert logger.level == logging.DEBUG
    assert logging.getLogger("servicequeue.queue.engine").getEffectiveLevel() == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.DEBUG


def test_client_loggers_stay_quiet_above_debug():
    levels = logger_levels(Settings(log_level="INFO"))

    assert levels["servicequeue"] == logging.INFO
    assert levels["httpx"] == logging.WARNING
    assert levels["aiosqlite"] == logging.WARNING


def test_unknown_log_level_falls_back_to_info():
    assert logger_levels(Settings(log_level="chatty"))["servicequeue"] == logging.INFO


def test_parse_otlp_headers():
    assert parse_otlp_headers(None) == {}
    assert parse_otlp_headers("api-key=abc, x-team = queue,,broken") == {"api-key": "abc", "x-team": "queue"}


def test_tracer_disabled_by_default():
    assert init_tracer(Settings()) is None
