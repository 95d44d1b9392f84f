"""
Capability interface every platform binding implements.

Bindings wrap a concrete platform API. They raise ``PlatformError``
subclasses for classified failures (``InvalidGrantError`` when a refresh
token is rejected, ``RateLimitedError`` when the platform throttles) and
are free to raise anything else for unclassified failures.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ..constants import Platform
from ..schemas.credential_schemas import CredentialBundle
from ..schemas.rate_limit_schemas import EndpointInfo, RateLimitStatus


class PlatformCapabilities(ABC):
    """Operations the core needs from one platform."""

    platform: Platform

    @abstractmethod
    def get_credential(self, authorization: Dict[str, Any]) -> CredentialBundle:
        """
        Complete an OAuth exchange and return a fresh bundle.

        Args:
            authorization: Callback parameters (authorization code, PKCE verifier, ...)
        """

    @abstractmethod
    def refresh(self, credential: CredentialBundle) -> CredentialBundle:
        """
        Exchange ``credential.refresh_token`` for a new bundle.

        The returned bundle may omit the refresh token when the platform
        does not rotate it.

        Raises:
            InvalidGrantError: If the platform rejects the refresh token
        """

    @abstractmethod
    def revoke(self, credential: CredentialBundle) -> None:
        """Revoke the tokens upstream."""

    @abstractmethod
    def perform_action(
        self, account_id: str, action: str, payload: Dict[str, Any], credential: CredentialBundle
    ) -> Any:
        """Perform an action as the given account and return the platform's result."""

    @abstractmethod
    def get_rate_limit(self, endpoint: EndpointInfo) -> Optional[RateLimitStatus]:
        """Return the current window for an endpoint, or None if unknown."""

    @abstractmethod
    def endpoint_for_action(self, action: str) -> Optional[EndpointInfo]:
        """Map an action name to the endpoint it is metered against."""

    def get_all_rate_limits(self) -> Dict[str, RateLimitStatus]:
        """Return every window the binding knows about. Bindings may override."""
        return {}

    def get_binding_name(self) -> str:
        return self.__class__.__name__
