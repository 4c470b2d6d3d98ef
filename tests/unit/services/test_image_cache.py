"""Unit tests for the image digest cache and resolver."""

from datetime import timedelta

import pytest

from clusterscan.core.exceptions import RegistryError
from clusterscan.models.scan_config import Image
from clusterscan.services.image_cache import ContainerImageResolver, ImageCache

DIGEST = "sha256:" + "a" * 64


@pytest.mark.unit
class TestImageCache:
    """Test cache freshness and failure behaviour."""

    def test_first_lookup_fetches(self, image_cache, fetch):
        ref = image_cache.get_image("ghcr.io/clusterscan/scanner:9")

        assert ref == "ghcr.io/clusterscan/scanner@sha256:" + "1".zfill(64)
        assert fetch.calls == ["ghcr.io/clusterscan/scanner:9"]
        assert len(image_cache) == 1

    def test_fresh_entry_served_from_cache(self, image_cache, fetch, clock):
        """Test lookups just inside the refresh window hit the cache."""
        first = image_cache.get_image("scanner:9")
        clock.advance(timedelta(hours=24) - timedelta(seconds=1))

        assert image_cache.get_image("scanner:9") == first
        assert len(fetch.calls) == 1

    def test_stale_entry_refetched(self, image_cache, fetch, clock):
        """Test lookups just past the refresh window fetch again."""
        first = image_cache.get_image("scanner:9")
        clock.advance(timedelta(hours=24) + timedelta(seconds=1))

        second = image_cache.get_image("scanner:9")
        assert second != first
        assert len(fetch.calls) == 2
        assert image_cache.entries()["scanner:9"].last_updated == clock()

    def test_keys_are_independent(self, image_cache, fetch):
        image_cache.get_image("scanner:9")
        image_cache.get_image("scanner:10")
        assert len(fetch.calls) == 2

    def test_fetch_error_propagates_without_stale_fallback(self, clock):
        """Test a failed refresh surfaces the error instead of the old digest."""
        responses = iter(["scanner@" + DIGEST])

        def flaky(image):
            try:
                return next(responses)
            except StopIteration:
                raise RegistryError("registry unavailable", status_code=503)

        cache = ImageCache(flaky, now=clock)
        assert cache.get_image("scanner:9") == "scanner@" + DIGEST

        clock.advance(timedelta(days=2))
        with pytest.raises(RegistryError):
            cache.get_image("scanner:9")

    def test_failure_not_cached(self, clock):
        """Test a failed first lookup is retried on the next call."""
        calls = []

        def fail_once(image):
            calls.append(image)
            if len(calls) == 1:
                raise RegistryError("timeout")
            return "scanner@" + DIGEST

        cache = ImageCache(fail_once, now=clock)
        with pytest.raises(RegistryError):
            cache.get_image("scanner:9")
        assert len(cache) == 0
        assert cache.get_image("scanner:9") == "scanner@" + DIGEST

    def test_custom_refresh_period(self, fetch, clock):
        cache = ImageCache(fetch, refresh_period=timedelta(minutes=5), now=clock)
        cache.get_image("scanner:9")
        clock.advance(timedelta(minutes=6))
        cache.get_image("scanner:9")
        assert len(fetch.calls) == 2


@pytest.mark.unit
class TestContainerImageResolver:
    """Test image selection for workloads."""

    def test_digest_wins(self, image_resolver, fetch):
        """Test a pinned digest is used verbatim without a lookup."""
        image = Image(name="ghcr.io/clusterscan/scanner", tag="9", digest=DIGEST)
        assert image_resolver.scanner_image(image, skip_resolve=False) == "ghcr.io/clusterscan/scanner@" + DIGEST
        assert fetch.calls == []

    def test_skip_resolution_uses_tag(self, image_resolver, fetch):
        """Test skip mode returns the tag reference untouched."""
        image = Image(name="ghcr.io/clusterscan/scanner", tag="9")
        assert image_resolver.scanner_image(image, skip_resolve=True) == "ghcr.io/clusterscan/scanner:9"
        assert fetch.calls == []

    def test_tag_resolved_through_cache(self, image_resolver, fetch):
        image = Image(name="ghcr.io/clusterscan/scanner", tag="9")
        resolved = image_resolver.scanner_image(image, skip_resolve=False)
        image_resolver.scanner_image(image, skip_resolve=False)

        assert "@sha256:" in resolved
        assert fetch.calls == ["ghcr.io/clusterscan/scanner:9"]

    def test_defaults_fill_missing_fields(self, image_cache):
        """Test name and tag fall back to the configured defaults."""
        resolver = ContainerImageResolver(
            image_cache, scanner_image="registry.local/scanner", scanner_tag="5",
            operator_image="registry.local/operator", operator_tag="1.2",
        )
        assert resolver.scanner_image(None, skip_resolve=True) == "registry.local/scanner:5"
        assert resolver.scanner_image(Image(tag="6"), skip_resolve=True) == "registry.local/scanner:6"
        assert resolver.operator_image(Image(), skip_resolve=True) == "registry.local/operator:1.2"
