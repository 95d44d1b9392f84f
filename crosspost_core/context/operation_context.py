"""
Operation scopes: correlation id, timing and ENTER/EXIT/ERROR log lines
around a unit of work.

Call arguments are never logged. Gateway and service methods routinely
receive capability tokens and credential bundles.
"""

import time
import uuid
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar, Union, cast

from ..config import get_config
from ..exceptions import BaseError, clear_correlation_id, get_correlation_id, set_correlation_id
from ..utils.logger import ContextAwareLogger, get_logger
from .principal_context import PrincipalContext

F = TypeVar("F", bound=Callable[..., Any])


class OperationContext:
    """Identity, timing and counters of one running operation."""

    def __init__(self, operation_name: str, correlation_id: Optional[str] = None, **context):
        self.operation_name = operation_name
        self.operation_id = uuid.uuid4().hex
        # Nested operations join the caller's correlation id
        self.correlation_id = correlation_id or get_correlation_id() or uuid.uuid4().hex
        self.context: Dict[str, Any] = {
            **context,
            "operation_id": self.operation_id,
            "correlation_id": self.correlation_id,
        }
        self.metrics: Dict[str, Union[int, float]] = {}
        self._started = time.monotonic()

    @property
    def duration_ms(self) -> float:
        return (time.monotonic() - self._started) * 1000

    def add_context(self, **kwargs) -> None:
        self.context.update(kwargs)

    def add_metric(self, name: str, value: Union[int, float]) -> None:
        self.metrics[name] = value

    def outcome(self, status: str, **extra) -> Dict[str, Any]:
        """Log payload for the closing line of the operation."""
        return {
            **self.context,
            "duration_ms": round(self.duration_ms, 3),
            "status": status,
            **self.metrics,
            **extra,
        }


class OperationHandler:
    """
    Opens operation scopes on a logger.

    Classified errors under 500 are the caller's fault (bad token, missing
    link) and close the scope at warning level. Server-side classified
    errors close it at error level. Anything unclassified is logged with its
    traceback.
    """

    def __init__(self, logger: Optional[ContextAwareLogger] = None):
        self.logger = logger if logger is not None else get_logger()

    @contextmanager
    def operation(self, name: str, **context) -> Iterator[OperationContext]:
        principal_id = PrincipalContext.get_current_principal_id()
        if principal_id:
            context.setdefault("principal_id", principal_id)

        outer_correlation_id = get_correlation_id()
        op_ctx = OperationContext(name, **context)
        set_correlation_id(op_ctx.correlation_id)
        self.logger.info(f"ENTER: {name}", extra=dict(op_ctx.context))

        try:
            yield op_ctx
        except BaseError as e:
            e.add_context(
                operation_name=name,
                operation_id=op_ctx.operation_id,
                operation_duration_ms=op_ctx.duration_ms,
            )
            log = self.logger.warning if e.status_code < 500 else self.logger.error
            log(
                f"ERROR: {name} -> {e.error_code.value}: {e.message}",
                extra=op_ctx.outcome(
                    "error", error_id=e.error_id, error_code=e.error_code.value
                ),
            )
            raise
        except Exception as e:
            self.logger.exception(
                f"ERROR: {name} -> {type(e).__name__}: {e}",
                extra=op_ctx.outcome("error", error_type=type(e).__name__),
            )
            raise
        else:
            self.logger.info(f"EXIT: {name}", extra=op_ctx.outcome("success"))
        finally:
            if outer_correlation_id:
                set_correlation_id(outer_correlation_id)
            else:
                clear_correlation_id()


def _qualified_name(func: Callable, args: tuple) -> str:
    name = func.__name__
    if args and hasattr(args[0], name):
        name = f"{type(args[0]).__name__}.{name}"
    return f"{func.__module__.rsplit('.', 1)[-1]}.{name}"


def operation(name: Union[Optional[str], Callable] = None):
    """
    Wrap a function in an operation scope.

    Usable bare (``@operation``) or called (``@operation()``,
    ``@operation(name="gateway.link")``). Without a name the scope is called
    ``<module>.<Class>.<method>``. A no-op when
    ``features.enable_operation_context`` is off.
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            if not get_config().features.enable_operation_context:
                return func(*args, **kwargs)

            op_name = name if isinstance(name, str) else _qualified_name(func, args)
            with OperationHandler().operation(op_name, source_module=func.__module__):
                return func(*args, **kwargs)

        return cast(F, wrapper)

    if callable(name):
        func, name = name, None
        return decorator(func)
    return decorator
