"""
Principal context management.

Holds the verified principal for the current thread so log records and
audit entries can be attributed without threading the id through every call.
"""

import threading
from contextlib import contextmanager
from typing import Generator, Optional

from ..exceptions import ErrorCode, ValidationError


class PrincipalContext:
    """Thread-local holder for the principal driving the current request."""

    _thread_local = threading.local()

    @classmethod
    def set_current_principal(cls, principal_id: str) -> None:
        """
        Set the current principal ID for the execution context.

        Raises:
            ValidationError: If principal_id is empty or not a string
        """
        if not principal_id or not isinstance(principal_id, str) or not principal_id.strip():
            raise ValidationError(
                "principal_id must be a non-empty string",
                error_code=ErrorCode.MISSING_REQUIRED,
                field="principal_id",
            )
        cls._thread_local.principal_id = principal_id

    @classmethod
    def get_current_principal_id(cls) -> Optional[str]:
        return getattr(cls._thread_local, "principal_id", None)

    @classmethod
    def clear_current_principal(cls) -> None:
        if hasattr(cls._thread_local, "principal_id"):
            delattr(cls._thread_local, "principal_id")


@contextmanager
def principal_context(principal_id: str) -> Generator[None, None, None]:
    """
    Set the current principal for the duration of the block.

    The previous principal (if any) is restored afterward.
    """
    previous = PrincipalContext.get_current_principal_id()
    PrincipalContext.set_current_principal(principal_id)
    try:
        yield
    finally:
        if previous:
            PrincipalContext.set_current_principal(previous)
        else:
            PrincipalContext.clear_current_principal()
