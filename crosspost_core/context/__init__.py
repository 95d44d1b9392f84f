"""Context management for operations and principal attribution."""

from .operation_context import OperationContext, OperationHandler, operation
from .principal_context import PrincipalContext, principal_context

__all__ = [
    "operation",
    "OperationContext",
    "OperationHandler",
    "PrincipalContext",
    "principal_context",
]
