"""Tests for the decrypted credential cache."""

import pytest

from crosspost_core.constants import Platform
from crosspost_core.exceptions import ServiceError
from crosspost_core.services.credential_cache import CredentialCache
from tests.fixtures.factories import CredentialBundleFactory


class FakeMonotonic:
    def __init__(self):
        self.value = 0.0

    def __call__(self):
        return self.value


@pytest.fixture
def monotonic():
    return FakeMonotonic()


class TestLifecycle:
    def test_use_before_start_rejected(self):
        cache = CredentialCache()
        with pytest.raises(ServiceError):
            cache.get(Platform.TWITTER, "u1")

    def test_close_drops_entries(self):
        cache = CredentialCache().start()
        cache.put(CredentialBundleFactory(account_id="u1"))

        cache.close()

        assert len(cache) == 0
        assert cache.started is False

    def test_context_manager(self):
        with CredentialCache() as cache:
            assert cache.started is True
        assert cache.started is False


class TestEntries:
    def test_put_get_invalidate(self):
        with CredentialCache() as cache:
            bundle = CredentialBundleFactory(account_id="u1")
            cache.put(bundle)

            assert cache.get(Platform.TWITTER, "u1") == bundle

            cache.invalidate(Platform.TWITTER, "u1")
            assert cache.get(Platform.TWITTER, "u1") is None

    def test_ttl(self, monotonic):
        with CredentialCache(ttl_seconds=10, monotonic=monotonic) as cache:
            cache.put(CredentialBundleFactory(account_id="u1"))

            monotonic.value = 9.9
            assert cache.get(Platform.TWITTER, "u1") is not None

            monotonic.value = 10.0
            assert cache.get(Platform.TWITTER, "u1") is None
            assert len(cache) == 0

    def test_lru_eviction(self):
        with CredentialCache(max_entries=2) as cache:
            cache.put(CredentialBundleFactory(account_id="u1"))
            cache.put(CredentialBundleFactory(account_id="u2"))
            cache.get(Platform.TWITTER, "u1")
            cache.put(CredentialBundleFactory(account_id="u3"))

            assert cache.get(Platform.TWITTER, "u1") is not None
            assert cache.get(Platform.TWITTER, "u2") is None
            assert cache.get(Platform.TWITTER, "u3") is not None
