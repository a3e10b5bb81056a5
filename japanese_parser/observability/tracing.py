# ==== OPENTELEMETRY TRACING CONFIGURATION ==== #

"""
OpenTelemetry tracing configuration for the Japanese parser.

Spans wrap tool dispatch and every Ichiran engine invocation. Export over
OTLP is enabled only when an endpoint is configured, so local runs need no
collector.
"""

import os
from typing import Any, Dict

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor


# ==== TRACING INITIALIZATION ==== #

def init_tracing(service_name: str) -> bool:
    """
    Initialize OpenTelemetry tracing with an OTLP exporter.

    Args:
        service_name (str): Name of the service for tracing identification

    Returns:
        bool: True if an exporter was installed
    """
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    headers = os.getenv("OTEL_EXPORTER_OTLP_HEADERS")

    # ⚠️ Allow local runs without a collector
    if not endpoint:
        return False

    resource_attrs = _parse_key_values(os.getenv("OTEL_RESOURCE_ATTRIBUTES", ""))
    resource_attrs["service.name"] = os.getenv("OTEL_SERVICE_NAME", service_name)

    provider = TracerProvider(resource=Resource.create(resource_attrs))
    exporter = OTLPSpanExporter(
        endpoint=endpoint,
        headers=_parse_key_values(headers)
    )

    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return True


def _parse_key_values(raw: str | None) -> Dict[str, Any]:
    """Parse comma-separated key=value pairs from an OTEL environment variable.

    Args:
        raw: Comma-separated key=value pairs

    Returns:
        Dictionary of parsed pairs
    """
    pairs: Dict[str, Any] = {}
    if not raw:
        return pairs

    for part in filter(None, map(str.strip, raw.split(","))):
        if "=" in part:
            key, value = part.split("=", 1)
            pairs[key.strip()] = value.strip()

    return pairs


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer instance for the given module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Tracer instance
    """
    return trace.get_tracer(name)
