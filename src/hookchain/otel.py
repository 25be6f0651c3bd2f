"""hook-chain OpenTelemetry integration.

Emits a span per chain run and per hook invocation.
Gracefully degrades to no-op if OpenTelemetry is not installed.

Install: pip install hook-chain[otel]
"""

from __future__ import annotations

import contextlib
import os
from typing import Any

from hookchain.config import OtelConfig

try:
    from opentelemetry import trace
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    _HAS_OTEL = True
except ImportError:
    _HAS_OTEL = False

_DEFAULT_GRPC_ENDPOINT = "http://localhost:4317"
_DEFAULT_HTTP_ENDPOINT = "http://localhost:4318/v1/traces"


def has_otel() -> bool:
    """Check if OpenTelemetry is available."""
    return _HAS_OTEL


def _is_provider_configured() -> bool:
    if not _HAS_OTEL:
        return False
    # Still a proxy provider until an SDK provider is installed.
    return isinstance(trace.get_tracer_provider(), TracerProvider)


def _resource_attributes(service_name: str, extra: dict[str, str] | None, version: str | None) -> dict[str, str]:
    attrs: dict[str, str] = {"service.name": service_name}
    if version:
        attrs["service.version"] = version
    if extra:
        attrs.update(extra)

    env_attrs = os.environ.get("OTEL_RESOURCE_ATTRIBUTES", "")
    for pair in env_attrs.split(","):
        if "=" in pair:
            k, v = pair.split("=", 1)
            attrs[k.strip()] = v.strip()
    return attrs


def configure_otel(
    *,
    service_name: str = "hook-chain",
    endpoint: str = _DEFAULT_GRPC_ENDPOINT,
    protocol: str = "grpc",
    resource_attributes: dict[str, str] | None = None,
    version: str | None = None,
    force: bool = False,
) -> bool:
    """Install an OTLP-exporting tracer provider.

    No-op when OpenTelemetry is missing, or when the host process already
    configured a provider (unless *force*). ``OTEL_SERVICE_NAME``,
    ``OTEL_EXPORTER_OTLP_ENDPOINT`` and ``OTEL_EXPORTER_OTLP_PROTOCOL``
    override the arguments; ``OTEL_RESOURCE_ATTRIBUTES`` is merged last.

    Any *protocol* other than ``"grpc"`` selects the HTTP exporter, moving
    the default endpoint to port 4318.

    Returns True when a provider was installed.
    """
    if not _HAS_OTEL:
        return False
    if _is_provider_configured() and not force:
        return False

    actual_service = os.environ.get("OTEL_SERVICE_NAME", service_name)
    actual_endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT", endpoint)
    actual_protocol = os.environ.get("OTEL_EXPORTER_OTLP_PROTOCOL", protocol)

    use_grpc = actual_protocol == "grpc"
    if not use_grpc and actual_endpoint == _DEFAULT_GRPC_ENDPOINT:
        actual_endpoint = _DEFAULT_HTTP_ENDPOINT

    resource = Resource.create(_resource_attributes(actual_service, resource_attributes, version))
    provider = TracerProvider(resource=resource)

    if use_grpc:
        exporter = OTLPSpanExporter(endpoint=actual_endpoint, insecure=True)
    else:
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter as HTTPExporter

        exporter = HTTPExporter(endpoint=actual_endpoint)

    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return True


def configure_from_config(cfg: OtelConfig, version: str | None = None) -> bool:
    if not cfg.enabled:
        return False
    return configure_otel(
        service_name=cfg.service_name,
        endpoint=cfg.endpoint,
        protocol=cfg.protocol,
        resource_attributes=cfg.resource_attributes,
        version=version,
    )


def shutdown() -> None:
    """Flush pending spans before the process exits."""
    if not _is_provider_configured():
        return
    trace.get_tracer_provider().shutdown()


def get_tracer(name: str = "hookchain") -> Any:
    """Get an OTel tracer. Returns no-op if OTel not installed."""
    if not _HAS_OTEL:
        return _NoOpTracer()
    return trace.get_tracer(name)


class _NoOpSpan:
    """Dummy span when OTel is not available."""

    def __enter__(self):
        return self

    def __exit__(self, *args):
        pass

    def set_attribute(self, key: str, value: Any) -> None:
        pass

    def set_attributes(self, attributes: dict[str, Any]) -> None:
        pass

    def add_event(self, name: str, attributes: dict | None = None) -> None:
        pass

    def end(self) -> None:
        pass


class _NoOpTracer:
    """Dummy tracer when OTel is not available."""

    def start_span(self, name: str, **kwargs: Any) -> _NoOpSpan:
        return _NoOpSpan()

    def start_as_current_span(self, name: str, **kwargs: Any) -> contextlib.AbstractContextManager:
        @contextlib.contextmanager
        def _noop_ctx():
            yield _NoOpSpan()

        return _noop_ctx()
