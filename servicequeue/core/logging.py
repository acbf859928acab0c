"""Log routing and optional OTLP tracing for the queue service."""

from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from servicequeue.core.config import Settings

APP_LOGGER = "servicequeue"
SQL_LOGGER = "sqlalchemy.engine"
# Chatty client libraries stay at WARNING unless the service itself runs at DEBUG.
QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite", "opentelemetry")

_active_provider: TracerProvider | None = None


def parse_otlp_headers(raw: str | None) -> dict[str, str]:
    """Parse ``key=value,key2=value2`` as used by ``OTEL_EXPORTER_OTLP_HEADERS``."""

    headers: dict[str, str] = {}
    for item in (raw or "").split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            headers[key.strip()] = value.strip()
    return headers


def logger_levels(settings: Settings) -> dict[str, int]:
    """Level per named logger: queue modules follow ``log_level``, SQL follows ``database_echo``."""

    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    levels = {
        APP_LOGGER: level,
        SQL_LOGGER: logging.INFO if settings.database_echo else logging.WARNING,
    }
    quiet = level if level <= logging.DEBUG else logging.WARNING
    levels.update({name: quiet for name in QUIET_LOGGERS})
    return levels


def configure_logging(settings: Settings) -> logging.Logger:
    """Install one stream handler and set queue, SQL and client logger levels.

    Returns the ``servicequeue`` logger that module loggers propagate to.
    """

    levels = logger_levels(settings)
    config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": {"format": settings.log_format}},
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
            }
        },
        "loggers": {name: {"level": value} for name, value in levels.items()},
        "root": {"handlers": ["default"], "level": logging.WARNING},
    }
    dictConfig(config)

    logger = logging.getLogger(APP_LOGGER)
    logger.debug(
        "Logging configured for %s (%s), SQL echo %s",
        settings.app_name,
        settings.environment,
        "on" if settings.database_echo else "off",
    )
    return logger


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Install an OTLP tracer provider for the ``queue.*`` spans when enabled."""

    global _active_provider

    if _active_provider is not None or not settings.otel_enabled:
        return None

    provider = TracerProvider(
        resource=Resource(
            attributes={
                "service.name": settings.otel_service_name,
                "deployment.environment": settings.environment,
            }
        )
    )
    exporter_kwargs: dict[str, Any] = {"headers": parse_otlp_headers(settings.otel_exporter_otlp_headers)}
    if settings.otel_exporter_otlp_endpoint:
        exporter_kwargs["endpoint"] = settings.otel_exporter_otlp_endpoint
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**exporter_kwargs)))

    trace.set_tracer_provider(provider)
    _active_provider = provider
    logging.getLogger(APP_LOGGER).info("Tracing enabled as %s", settings.otel_service_name)
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    """Flush pending spans and release the provider installed by ``init_tracer``."""

    global _active_provider

    if provider is None:
        return
    provider.force_flush()
    provider.shutdown()
    if provider is _active_provider:
        _active_provider = None
