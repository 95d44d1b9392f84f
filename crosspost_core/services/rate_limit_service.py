"""
Advisory rate-limit gate.

The platform itself is the authoritative limiter, so every uncertain case
here admits the action: an unmapped action, an unknown window, or a failed
status query.
"""

from datetime import datetime
from typing import Callable, Dict, Optional

from ..constants import Platform
from ..db.db_base import utc_now
from ..platforms.registry import PlatformRegistry
from ..schemas.rate_limit_schemas import EndpointInfo, RateLimitStatus
from ..utils.logger import get_logger


class RateLimitService:
    """Per-(platform, action) admission check backed by platform-reported windows."""

    def __init__(
        self, platforms: PlatformRegistry, clock: Optional[Callable[[], datetime]] = None
    ):
        self.platforms = platforms
        self.clock = clock or utc_now
        self.logger = get_logger()

    def get_rate_limit_status(
        self, platform: Platform, endpoint: str, version: Optional[str] = None
    ) -> Optional[RateLimitStatus]:
        """Return the window for an endpoint, or None if unknown or the query failed."""
        platform = Platform(platform)
        try:
            return self.platforms.get(platform).get_rate_limit(
                EndpointInfo(endpoint=endpoint, version=version)
            )
        except Exception as e:
            self.logger.error(
                "Error getting rate limit status",
                extra={
                    "platform": platform.value,
                    "endpoint": endpoint,
                    "error_type": type(e).__name__,
                    "error_details": str(e),
                },
            )
            return None

    def is_rate_limited(self, status: Optional[RateLimitStatus]) -> bool:
        """True only for a known window that is exhausted and not yet reset."""
        if status is None:
            return False
        return status.is_exhausted(self.clock())

    def is_rate_limit_obsolete(self, status: Optional[RateLimitStatus]) -> bool:
        """True when there is no window or its reset time has passed."""
        if status is None:
            return True
        return status.is_obsolete(self.clock())

    def can_perform_action(self, platform: Platform, action: str = "post") -> bool:
        platform = Platform(platform)
        try:
            binding = self.platforms.get(platform)
            endpoint = binding.endpoint_for_action(action)
            if endpoint is None:
                self.logger.warning(
                    "No rate limit endpoint defined for action",
                    extra={"platform": platform.value, "action": action},
                )
                return True

            status = binding.get_rate_limit(endpoint)
            if self.is_rate_limited(status):
                self.logger.warning(
                    "Rate limit reached",
                    extra={
                        "platform": platform.value,
                        "action": action,
                        "endpoint": endpoint.endpoint,
                        "reset_at": status.reset_at.isoformat(),
                    },
                )
                return False
            return True

        except Exception as e:
            # Fail open
            self.logger.error(
                "Error checking rate limits; allowing action",
                extra={
                    "platform": platform.value,
                    "action": action,
                    "error_type": type(e).__name__,
                    "error_details": str(e),
                },
            )
            return True

    def get_all_rate_limits(self, platform: Platform) -> Dict[str, RateLimitStatus]:
        platform = Platform(platform)
        try:
            return dict(self.platforms.get(platform).get_all_rate_limits())
        except Exception as e:
            self.logger.error(
                "Error getting all rate limits",
                extra={
                    "platform": platform.value,
                    "error_type": type(e).__name__,
                    "error_details": str(e),
                },
            )
            return {}
