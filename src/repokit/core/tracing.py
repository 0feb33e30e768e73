"""OpenTelemetry configuration and span decorators for repository operations.

Spans are only created when tracing is enabled; otherwise the decorators
return the wrapped function unchanged.
"""
import functools
import os
from typing import Any, Callable, Optional, TypeVar

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace.status import Status, StatusCode

from repokit import __version__
from repokit.core.config import Settings, settings as default_settings

F = TypeVar("F", bound=Callable[..., Any])

# Builds extra span attributes from the decorated call's arguments
AttributeHook = Callable[[tuple[Any, ...], dict[str, Any]], dict[str, Any]]


def is_tracing_enabled() -> bool:
    """Check if tracing should be enabled.

    Tracing is disabled during tests and when explicitly disabled in config.
    """
    if "pytest" in os.environ.get("_", "") or os.environ.get("PYTEST_CURRENT_TEST"):
        return False

    return default_settings.otel_enabled


def configure_tracing(settings: Settings | None = None) -> Optional[TracerProvider]:
    """Install an OTLP gRPC exporting tracer provider if tracing is enabled.

    Returns:
        The installed provider, or None when tracing is disabled
    """
    if not is_tracing_enabled():
        return None

    settings = settings or default_settings
    resource = Resource.create({
        "service.name": settings.otel_service_name,
        "service.version": __version__,
        "deployment.environment": settings.environment,
    })

    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(
                endpoint=settings.otel_exporter_otlp_endpoint,
                insecure=not settings.is_production,
            )
        )
    )

    trace.set_tracer_provider(tracer_provider)
    return tracer_provider


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer instance for the given module name."""
    return trace.get_tracer(name)


def _set_attributes(span: Any, attributes: dict[str, Any]) -> None:
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(key, value if isinstance(value, (bool, int, float)) else str(value))


def trace_async(
    span_name: str | None = None,
    tracer_name: str | None = None,
    attribute_hook: AttributeHook | None = None,
    **span_attributes: Any
) -> Callable[[F], F]:
    """Decorator to trace async functions with OpenTelemetry spans.

    Args:
        span_name: Custom span name. If None, uses module.function_name
        tracer_name: Custom tracer name. If None, uses function's module
        attribute_hook: Called with (args, kwargs) for per-call attributes
        **span_attributes: Static span attributes

    Example:
        @trace_async("store.check_connection", component="database")
        async def check_connection() -> bool:
            ...
    """
    def decorator(func: F) -> F:
        if not is_tracing_enabled():
            return func

        name = span_name or f"{func.__module__}.{func.__name__}"

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            tracer = get_tracer(tracer_name or func.__module__)

            with tracer.start_as_current_span(name) as span:
                _set_attributes(span, span_attributes)
                if attribute_hook is not None:
                    _set_attributes(span, attribute_hook(args, kwargs))

                try:
                    result = await func(*args, **kwargs)
                    span.set_status(Status(StatusCode.OK))
                    return result
                except Exception as exc:
                    span.record_exception(exc)
                    span.set_status(Status(StatusCode.ERROR, str(exc)))
                    raise

        return async_wrapper  # type: ignore
    return decorator


def _repository_attributes(args: tuple[Any, ...], kwargs: dict[str, Any]) -> dict[str, Any]:
    # args[0] is the repository instance
    repository = args[0] if args else None
    model = getattr(repository, "model", None)
    return {
        "db.sql.table": getattr(model, "__tablename__", None),
        "repository.model": getattr(model, "__name__", None),
        "repository.tombstone_filter": kwargs.get("tombstone_filter"),
        "repository.own_session": kwargs.get("session") is None,
    }


def trace_database(operation: str | None = None) -> Callable[[F], F]:
    """Trace a repository method that reaches the store.

    The span is named ``repository.<operation>`` and carries the model,
    table, requested tombstone policy and whether the repository opened its
    own session.

    Args:
        operation: Database operation type. If None, uses function name

    Example:
        @trace_database()
        async def count(self, condition=None, *, session=None) -> int:
            ...
    """
    def decorator(func: F) -> F:
        op_name = operation or func.__name__
        return trace_async(
            span_name=f"repository.{op_name}",
            attribute_hook=_repository_attributes,
            **{
                "db.operation": op_name,
                "db.system": default_settings.database_system,
                "component": "database"
            }
        )(func)
    return decorator
