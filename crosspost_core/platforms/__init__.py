"""Platform capability interface and binding registry."""

from .base import PlatformCapabilities
from .registry import PlatformRegistry

__all__ = ["PlatformCapabilities", "PlatformRegistry"]
