"""
Image digest resolution with a process-lifetime cache.

Tags are resolved to immutable digest references so that every scan workload
runs exactly the image that was resolved, and a tag move shows up as an
update on the next refresh.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from clusterscan.core import metrics
from clusterscan.core.logging import get_logger
from clusterscan.models.scan_config import Image

REFRESH_PERIOD = timedelta(hours=24)

DEFAULT_SCANNER_IMAGE = "ghcr.io/clusterscan/scanner"
DEFAULT_SCANNER_TAG = "latest"
DEFAULT_OPERATOR_IMAGE = "ghcr.io/clusterscan/operator"


@dataclass
class ImageCacheEntry:
    key: str
    resolved_ref: str
    last_updated: datetime

    def to_dict(self):
        return {
            "key": self.key,
            "resolved_ref": self.resolved_ref,
            "last_updated": self.last_updated.isoformat(),
        }


class ImageCache:
    """Thread-safe map from tag references to digest references."""

    def __init__(
        self,
        fetch: Callable[[str], str],
        refresh_period: timedelta = REFRESH_PERIOD,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        logger: Optional[logging.Logger] = None,
    ):
        self.fetch = fetch
        self.refresh_period = refresh_period
        self.now = now
        self.logger = logger or get_logger(__name__)
        self._entries: Dict[str, ImageCacheEntry] = {}
        self._lock = threading.Lock()

    def get_image(self, image: str) -> str:
        with self._lock:
            entry = self._entries.get(image)

        now = self.now()
        if entry is not None and now - entry.last_updated < self.refresh_period:
            metrics.image_resolutions.labels(result="cache_hit").inc()
            return entry.resolved_ref

        # Lookup runs unlocked; concurrent refreshes of one key may both fetch.
        try:
            resolved = self.fetch(image)
        except Exception:
            metrics.image_resolutions.labels(result="error").inc()
            raise
        metrics.image_resolutions.labels(result="lookup").inc()

        with self._lock:
            self._entries[image] = ImageCacheEntry(key=image, resolved_ref=resolved, last_updated=now)
        if entry is None or entry.resolved_ref != resolved:
            self.logger.info(f"Resolved image {image} to {resolved}")
        return resolved

    def entries(self) -> Dict[str, ImageCacheEntry]:
        with self._lock:
            return dict(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ContainerImageResolver:
    """Chooses the image for each workload, resolving tags through the cache."""

    def __init__(
        self,
        cache: ImageCache,
        scanner_image: str = DEFAULT_SCANNER_IMAGE,
        scanner_tag: str = DEFAULT_SCANNER_TAG,
        operator_image: str = DEFAULT_OPERATOR_IMAGE,
        operator_tag: str = "latest",
    ):
        self.cache = cache
        self.scanner_default = Image(name=scanner_image, tag=scanner_tag)
        self.operator_default = Image(name=operator_image, tag=operator_tag)

    def scanner_image(self, image: Optional[Image], skip_resolve: bool) -> str:
        return self.resolve(image, self.scanner_default, skip_resolve)

    def operator_image(self, image: Optional[Image], skip_resolve: bool) -> str:
        return self.resolve(image, self.operator_default, skip_resolve)

    def resolve(self, image: Optional[Image], default: Image, skip_resolve: bool) -> str:
        image = image or Image()
        name = image.name or default.name
        if image.digest:
            return f"{name}@{image.digest}"
        tag = image.tag or default.tag
        reference = f"{name}:{tag}"
        if skip_resolve:
            metrics.image_resolutions.labels(result="skipped").inc()
            return reference
        return self.cache.get_image(reference)
