"""
Binding registry over the closed set of supported platforms.
"""

from typing import Dict, Iterator, Mapping

from ..constants import Platform
from ..exceptions import ErrorCode, ValidationError
from ..utils.logger import get_logger
from .base import PlatformCapabilities


class PlatformRegistry:
    """
    Immutable mapping from ``Platform`` to its binding.

    Every supported platform must be bound when the registry is built, so
    lookups never fail at call time for a valid ``Platform`` value.
    """

    def __init__(self, bindings: Mapping[Platform, PlatformCapabilities]):
        self.logger = get_logger()
        resolved: Dict[Platform, PlatformCapabilities] = {}

        for key, binding in bindings.items():
            try:
                platform = Platform(key)
            except ValueError as e:
                raise ValidationError(
                    f"Unsupported platform: {key}",
                    field="platform",
                    error_code=ErrorCode.UNSUPPORTED_PLATFORM,
                    cause=e,
                ) from e
            if not isinstance(binding, PlatformCapabilities):
                raise ValidationError(
                    f"Binding for {platform.value} does not implement PlatformCapabilities",
                    field="bindings",
                    error_code=ErrorCode.CONFIGURATION_ERROR,
                )
            resolved[platform] = binding

        missing = [platform.value for platform in Platform if platform not in resolved]
        if missing:
            raise ValidationError(
                f"No binding registered for: {', '.join(missing)}",
                field="bindings",
                error_code=ErrorCode.CONFIGURATION_ERROR,
                missing=missing,
            )

        self._bindings = resolved
        self.logger.info(
            "Platform bindings registered",
            extra={
                "platforms": ",".join(p.value for p in resolved),
                "bindings": ",".join(b.get_binding_name() for b in resolved.values()),
            },
        )

    def get(self, platform: Platform) -> PlatformCapabilities:
        return self._bindings[Platform(platform)]

    def __getitem__(self, platform: Platform) -> PlatformCapabilities:
        return self.get(platform)

    def __iter__(self) -> Iterator[Platform]:
        return iter(self._bindings)

    def __len__(self) -> int:
        return len(self._bindings)
