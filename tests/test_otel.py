"""Tests for OpenTelemetry integration."""

from __future__ import annotations

from hookchain.config import OtelConfig


def test_otel_import_without_deps():
    """OTel module should import without opentelemetry installed."""
    from hookchain.otel import has_otel

    assert isinstance(has_otel(), bool)


def test_noop_span():
    """NoOpSpan should accept all method calls silently."""
    from hookchain.otel import _NoOpSpan

    span = _NoOpSpan()
    span.set_attribute("key", "value")
    span.set_attributes({"a": 1, "b": "two"})
    span.add_event("test", {"key": "value"})
    span.end()
    with span:
        pass


def test_noop_tracer():
    """NoOpTracer should return NoOpSpan."""
    from hookchain.otel import _NoOpSpan, _NoOpTracer

    tracer = _NoOpTracer()
    span = tracer.start_span("test")
    assert isinstance(span, _NoOpSpan)
    span.end()


def test_noop_tracer_context_manager():
    """NoOpTracer.start_as_current_span should work as context manager."""
    from hookchain.otel import _NoOpSpan, _NoOpTracer

    tracer = _NoOpTracer()
    with tracer.start_as_current_span("hook_chain.run") as span:
        assert isinstance(span, _NoOpSpan)
        span.set_attribute("hook_chain.chain_len", 2)


def test_get_tracer_returns_something():
    """get_tracer should return a tracer (real or no-op)."""
    from hookchain.otel import get_tracer

    tracer = get_tracer("test")
    assert hasattr(tracer, "start_span")
    assert hasattr(tracer, "start_as_current_span")


def test_configure_from_disabled_config_is_noop():
    from hookchain.otel import configure_from_config

    assert configure_from_config(OtelConfig(enabled=False)) is False


def test_configure_without_otel_returns_false(monkeypatch):
    import hookchain.otel as otel_mod

    monkeypatch.setattr(otel_mod, "_HAS_OTEL", False)
    assert otel_mod.configure_otel() is False
    assert isinstance(otel_mod.get_tracer(), otel_mod._NoOpTracer)
    # Nothing configured, nothing to flush.
    otel_mod.shutdown()


def test_resource_attributes_merge_order(monkeypatch):
    from hookchain.otel import _resource_attributes

    monkeypatch.setenv("OTEL_RESOURCE_ATTRIBUTES", "team=ops, region = eu")
    attrs = _resource_attributes("hook-chain", {"team": "platform", "tier": "dev"}, "1.2.3")
    assert attrs == {
        "service.name": "hook-chain",
        "service.version": "1.2.3",
        "team": "ops",
        "tier": "dev",
        "region": "eu",
    }


def test_resource_attributes_without_version(monkeypatch):
    from hookchain.otel import _resource_attributes

    monkeypatch.delenv("OTEL_RESOURCE_ATTRIBUTES", raising=False)
    assert _resource_attributes("svc", None, None) == {"service.name": "svc"}
