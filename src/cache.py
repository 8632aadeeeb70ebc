"""
On-disk inventory cache keyed by (profile, region).
"""

import json
import logging
import os
import re
import tempfile
import time
from typing import Callable, Optional

from models import InventoryCacheEntry, TargetDescriptor

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300.0
_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


class InventoryCache:
    """Short-lived store of EC2 descriptors for one run."""

    def __init__(
        self,
        root: str,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache.

        Args:
            root: Directory holding cache files
            ttl: Maximum entry age in seconds
            clock: Source of the current time
        """
        self.root = root
        self.ttl = ttl
        self.clock = clock

    def path_for(self, identity: str, region: str) -> str:
        safe_identity = _UNSAFE.sub("_", identity)
        safe_region = _UNSAFE.sub("_", region)
        return os.path.join(self.root, f"inventory_{safe_identity}_{safe_region}.json")

    def load(self, identity: str, region: str) -> Optional[InventoryCacheEntry]:
        """
        Read a fresh entry for (identity, region).

        Absent, corrupt, mismatched or expired entries are all a miss.

        Returns:
            InventoryCacheEntry or None
        """
        path = self.path_for(identity, region)
        if not os.path.isfile(path):
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            entry = InventoryCacheEntry(
                identity=str(data["identity"]),
                region=str(data["region"]),
                fetched_at=float(data["fetched_at"]),
                descriptors={
                    str(k): TargetDescriptor.from_dict(v)
                    for k, v in data["descriptors"].items()
                },
            )
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"⚠ Ignoring unreadable inventory cache {path}: {e}")
            return None

        if entry.identity != identity or entry.region != region:
            logger.debug(f"Cache file {path} belongs to another profile/region")
            return None

        now = self.clock()
        if not entry.is_fresh(now, self.ttl):
            logger.info("Cache expired, fetching fresh data...")
            return None

        logger.info(f"✓ Using cached EC2 data ({entry.age(now):.0f}s old)")
        return entry

    def store(self, entry: InventoryCacheEntry) -> str:
        """
        Write an entry atomically: the file is replaced whole or not at all.

        The root directory must already exist; a removed root is never
        recreated.

        Returns:
            Path of the cache file

        Raises:
            FileNotFoundError: If the root directory is gone
        """
        if not os.path.isdir(self.root):
            raise FileNotFoundError(f"Cache directory does not exist: {self.root}")
        path = self.path_for(entry.identity, entry.region)
        payload = {
            "identity": entry.identity,
            "region": entry.region,
            "fetched_at": entry.fetched_at,
            "descriptors": {k: v.to_dict() for k, v in entry.descriptors.items()},
        }

        fd, tmp_path = tempfile.mkstemp(dir=self.root, prefix=".inventory_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        logger.debug(f"Inventory cache written: {path}")
        return path
