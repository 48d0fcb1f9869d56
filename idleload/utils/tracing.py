"""OpenTelemetry bootstrap: traces + logs for load attempts.

Both signals are opt-in: nothing is exported unless an OTLP endpoint is
configured (``OTLP_ENDPOINT`` in :class:`~idleload.config.Settings`).

Every load attempt runs inside an ``idleload.load`` span carrying the unit
name, so a slow startup can be read off a trace view.  Without a configured
provider :func:`get_tracer` hands back the global no-op tracer and spans
cost next to nothing.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

logger = logging.getLogger("idleload.tracing")

_tracer_provider: TracerProvider | None = None
_logger_provider: Any | None = None


def _resolve_endpoint(base: str | None, signal: str) -> str | None:
    """Derive a signal-specific OTLP endpoint from a base URL.

    Accepts both ``http://host:4318`` and ``http://host:4318/v1/traces``;
    returns ``None`` when *base* is falsy.
    """
    if not base:
        return None
    clean = re.sub(r"/v1/[^/]+$", "", base.rstrip("/"))
    return f"{clean}/v1/{signal}"


def setup_telemetry(
    otlp_endpoint: str | None = None,
    service_name: str = "idleload",
    service_version: str = "0.1.0",
    export_logs: bool = True,
) -> dict[str, Any]:
    """Initialise trace (and optionally log) export.

    Returns a dict with ``tracer_provider`` and ``logger_provider``; each is
    ``None`` when that signal is disabled.
    """
    global _tracer_provider, _logger_provider

    result: dict[str, Any] = {"tracer_provider": None, "logger_provider": None}
    if not otlp_endpoint:
        logger.debug("OpenTelemetry disabled: no OTLP endpoint configured.")
        return result

    resource = Resource.create({
        "service.name": service_name,
        "service.version": service_version,
    })

    traces_ep = _resolve_endpoint(otlp_endpoint, "traces")
    try:
        provider = TracerProvider(resource=resource)
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_ep)))
        trace.set_tracer_provider(provider)
        _tracer_provider = provider
        result["tracer_provider"] = provider
        logger.info("OTEL traces → %s", traces_ep)
    except Exception as exc:  # pragma: no cover
        logger.warning("OTEL traces setup failed: %s", exc)

    if export_logs:
        logs_ep = _resolve_endpoint(otlp_endpoint, "logs")
        try:
            from opentelemetry._logs import set_logger_provider
            from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
            from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
            from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter

            log_provider = LoggerProvider(resource=resource)
            log_provider.add_log_record_processor(
                BatchLogRecordProcessor(OTLPLogExporter(endpoint=logs_ep))
            )
            set_logger_provider(log_provider)
            logging.getLogger("idleload").addHandler(
                LoggingHandler(level=logging.NOTSET, logger_provider=log_provider)
            )
            _logger_provider = log_provider
            result["logger_provider"] = log_provider
            logger.info("OTEL logs   → %s", logs_ep)
        except Exception as exc:  # pragma: no cover
            logger.warning("OTEL logs setup failed: %s", exc)

    return result


def get_tracer(name: str):
    """Return a tracer (the global no-op tracer when nothing is configured)."""
    return trace.get_tracer(name)
