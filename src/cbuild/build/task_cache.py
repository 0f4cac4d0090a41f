"""Per-unit incremental build cache.

For every translation unit the cache stores two checksums:

    main.cc : (SHA256 of the source)
    main.o  : (SHA256 of the object)

A source checksum mismatch triggers a recompile; an object checksum that
differs after the recompile triggers a relink. Keeping both means an edit
that leaves the object byte-identical (a comment, whitespace) costs one
compile and no link.

Entries are positionally paired with the owning unit's source and object
lists. The recompile set is per-run state and is never persisted.
"""

import copy
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Sequence

from cbuild import output
from cbuild.output import Verbosity

from .checksum import PathLike, checksum, checksum_if_exists

logger = logging.getLogger(__name__)

CACHE_FORMAT_VERSION = 1


@dataclass
class CacheEntry:
    """Last-known checksums of one source file and its object file.

    Attributes:
        source: Path to the source file
        source_checksum: SHA256 of the source at its last compile, or None
        object: Path to the object file produced from source
        object_checksum: SHA256 of the object after its last compile, or None
    """

    source: Path
    source_checksum: Optional[str]
    object: Path
    object_checksum: Optional[str]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "source": str(self.source),
            "source_checksum": self.source_checksum,
            "object": str(self.object),
            "object_checksum": self.object_checksum,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheEntry":
        """Deserialize from dictionary."""
        return cls(
            source=Path(data["source"]),
            source_checksum=data.get("source_checksum"),
            object=Path(data["object"]),
            object_checksum=data.get("object_checksum"),
        )


class TaskCache:
    """Tracks source/object checksums for one compile unit.

    Usage:
        cache = TaskCache()
        if not cache.load(cache_file):
            cache.create(sources, objects)   # cold start: everything recompiles
        ...
        cache.update_source(src)
        cache.update_object(obj)
        cache.save(cache_file)
    """

    def __init__(self) -> None:
        self.entries: list[CacheEntry] = []
        self.recompile: set[Path] = set()

    def create(self, sources: Sequence[PathLike], objects: Sequence[PathLike]) -> None:
        """Populate the cache from paired source and object lists.

        Every source is marked for recompilation, since there is no record of
        how its object was produced.

        Args:
            sources: Source files, in unit order
            objects: Object files, positionally paired with sources

        Raises:
            ValueError: If the two lists differ in length
        """
        if len(sources) != len(objects):
            raise ValueError(f"Source/object lists are not paired: {len(sources)} sources, {len(objects)} objects")

        for src, obj in zip(sources, objects):
            src_path = Path(src)
            entry = CacheEntry(
                source=src_path,
                source_checksum=checksum_if_exists(src_path),
                object=Path(obj),
                object_checksum=checksum_if_exists(obj),
            )
            self.entries.append(entry)
            self.recompile.add(src_path)

    def reconcile(self, sources: Sequence[PathLike], objects: Sequence[PathLike]) -> bool:
        """Align loaded entries with the unit's current source list.

        Entries are reordered to follow ``sources``. A source without an
        entry (newly added, or now mapped to a different object) gets a fresh
        entry with no checksums, so it is never up to date. Entries for
        sources no longer in the unit are dropped.

        Args:
            sources: Current source files, in unit order
            objects: Object files, positionally paired with sources

        Returns:
            True if a source was added or removed since the cache was saved

        Raises:
            ValueError: If the two lists differ in length
        """
        if len(sources) != len(objects):
            raise ValueError(f"Source/object lists are not paired: {len(sources)} sources, {len(objects)} objects")

        remaining = {entry.source: entry for entry in self.entries}
        aligned: list[CacheEntry] = []
        changed = False

        for src, obj in zip(sources, objects):
            src_path, obj_path = Path(src), Path(obj)
            entry = remaining.pop(src_path, None)
            if entry is None or entry.object != obj_path:
                logger.debug(f"New cache entry: {src_path} -> {obj_path}")
                entry = CacheEntry(source=src_path, source_checksum=None, object=obj_path, object_checksum=None)
                changed = True
            aligned.append(entry)

        if remaining:
            logger.debug(f"Dropping {len(remaining)} stale cache entries: {sorted(str(p) for p in remaining)}")
            changed = True

        self.entries = aligned
        return changed

    def load(self, cache_file: PathLike) -> bool:
        """Load entries from a persisted cache file.

        Args:
            cache_file: Path to the cache file

        Returns:
            True if entries were loaded; False if the file is missing,
            unreadable, corrupted, or written by another format version
        """
        cache_path = Path(cache_file)
        if not cache_path.exists():
            logger.debug(f"Cache file not found: {cache_path}")
            return False

        try:
            with open(cache_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if data.get("version") != CACHE_FORMAT_VERSION:
                logger.warning(f"Ignoring cache {cache_path}: format version {data.get('version')!r} != {CACHE_FORMAT_VERSION}")
                return False
            entries = [CacheEntry.from_dict(item) for item in data["entries"]]
        except (json.JSONDecodeError, UnicodeDecodeError, OSError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Failed to load cache from {cache_path}: {e}")
            return False

        self.entries = entries
        logger.debug(f"Loaded cache with {len(self.entries)} entries from {cache_path}")
        return True

    def save(self, cache_file: PathLike) -> bool:
        """Save entries to disk atomically.

        Uses atomic write pattern (temp file + rename) so an interrupted
        build never leaves a half-written cache behind.

        Args:
            cache_file: Path to the cache file (overwritten)

        Returns:
            True if the cache was written
        """
        cache_path = Path(cache_file)
        payload = {
            "version": CACHE_FORMAT_VERSION,
            "entries": [entry.to_dict() for entry in self.entries],
        }

        try:
            cache_path.parent.mkdir(parents=True, exist_ok=True)
            temp_file = cache_path.with_name(cache_path.name + ".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            temp_file.replace(cache_path)
        except OSError as e:
            logger.error(f"Failed to save cache to {cache_path}: {e}")
            return False

        logger.debug(f"Saved cache with {len(self.entries)} entries to {cache_path}")
        return True

    def _find_by_source(self, path: PathLike) -> Optional[CacheEntry]:
        src_path = Path(path)
        for entry in self.entries:
            if entry.source == src_path:
                return entry
        return None

    def _find_by_object(self, path: PathLike) -> Optional[CacheEntry]:
        obj_path = Path(path)
        for entry in self.entries:
            if entry.object == obj_path:
                return entry
        return None

    @staticmethod
    def _matches(path: Path, cached: Optional[str]) -> bool:
        # Recomputed on every call: the verdict must reflect the file on disk now
        current = checksum_if_exists(path)
        up_to_date = current is not None and current == cached
        output.log_file(path.name, up_to_date)
        return up_to_date

    def is_source_uptodate(self, path: PathLike) -> bool:
        """Check a source file against its cached checksum.

        Args:
            path: Source file path, as listed in the unit

        Returns:
            True only if an entry exists and the file's current content
            matches the cached checksum
        """
        entry = self._find_by_source(path)
        if entry is None:
            logger.debug(f"No cache entry for source {path}")
            return False
        return self._matches(entry.source, entry.source_checksum)

    def is_object_uptodate(self, path: PathLike) -> bool:
        """Check an object file against its cached checksum.

        Args:
            path: Object file path

        Returns:
            True only if an entry exists and the file's current content
            matches the cached checksum
        """
        entry = self._find_by_object(path)
        if entry is None:
            logger.debug(f"No cache entry for object {path}")
            return False
        return self._matches(entry.object, entry.object_checksum)

    def update_source(self, path: PathLike) -> None:
        """Refresh the cached checksum of a source after a successful compile.

        Args:
            path: Source file path
        """
        entry = self._find_by_source(path)
        if entry is None:
            logger.debug(f"Cannot update cache for unknown source {path}")
            return
        output.log_detail(f"Updating {entry.source}..", level=Verbosity.DETAILED)
        entry.source_checksum = checksum(entry.source)

    def update_object(self, path: PathLike) -> None:
        """Refresh the cached checksum of an object after a successful compile.

        Args:
            path: Object file path
        """
        entry = self._find_by_object(path)
        if entry is None:
            logger.debug(f"Cannot update cache for unknown object {path}")
            return
        output.log_detail(f"Updating {entry.object}..", level=Verbosity.DETAILED)
        entry.object_checksum = checksum(entry.object)

    def clear(self) -> None:
        """Clear all entries and the recompile set."""
        self.entries.clear()
        self.recompile.clear()

    def snapshot(self) -> list[CacheEntry]:
        """Return a deep copy of the current entries."""
        return copy.deepcopy(self.entries)

    def dump(self, level: int = Verbosity.DEBUG) -> None:
        """Print every entry through the console reporter."""
        for i, entry in enumerate(self.entries):
            output.log_detail(f"[{i}] Source File......: {entry.source}", indent=0, level=level)
            output.log_detail(f"[{i}] Source Checksum..: {entry.source_checksum}", indent=0, level=level)
            output.log_detail(f"[{i}] Object File......: {entry.object}", indent=0, level=level)
            output.log_detail(f"[{i}] Object Checksum..: {entry.object_checksum}", indent=0, level=level)

    def __len__(self) -> int:
        return len(self.entries)
