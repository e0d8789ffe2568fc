"""
Storage - Crash-tolerant persistence of the index with size-bounded encodings.

On-disk layout (all names derived from a hash of the workspace identity):

    gosearch-index-<key>.meta.json               metadata, small and fixed-shape
    gosearch-index-<key>.<domain>.json           one unit per domain
    gosearch-index-<key>.<domain>.part<N>.json   multi-file parts, if any

Every unit is JSON lines: a header object naming its encoding, followed by
encoded entry lists. Entry lists escalate through three tiers so that no
single encode or decode has to hold an unbounded string:

    direct   - one list, when small enough
    chunked  - bounded sub-lists, one per line, shrunk adaptively if needed
    multi    - a descriptor unit plus independently size-checked part files;
               an oversized part is truncated rather than failing the save

A deprecated single-blob layout (go-search-index-<key>.json) is still read
and migrated to the current layout on first load.
"""

import json
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Type

from .config import get_config, IndexerConfig
from .models import DOMAIN_ORDER, FORMAT_VERSION, Domain, Index, IndexedFile
from .hasher import legacy_hash, storage_key
from .errors import CorruptUnitError, StorageError, handle_error


logger = logging.getLogger(__name__)


LAYOUT_VERSION = 3
INDEX_PREFIX = "gosearch-index-"
LEGACY_PREFIX = "go-search-index-"

# Room for a header line on top of the encoded entries
_HEADER_SLACK = 64 * 1024


class LoadStatus(Enum):
    LOADED = "loaded"
    MISS = "miss"               # Absent or incompatible, rebuild
    INCOMPLETE = "incomplete"   # Compatible but a domain came back short


@dataclass
class LoadOutcome:
    """Result of a load attempt. Anything but LOADED means rebuild."""
    status: LoadStatus
    reason: str = ""
    index: Optional[Index] = None

    @property
    def ok(self) -> bool:
        return self.status is LoadStatus.LOADED

    @classmethod
    def miss(cls, reason: str) -> "LoadOutcome":
        return cls(status=LoadStatus.MISS, reason=reason)


@dataclass
class UnitReport:
    """What a save actually wrote for one domain."""
    encoding: str
    entries: int        # Entries persisted (may be fewer than held, if degraded)
    degraded: bool = False


@dataclass
class PersistedIndexInfo:
    """A persisted index found in the storage directory."""
    workspace_name: str
    workspace_identity: str
    path: Path
    last_built: datetime
    size_bytes: int
    legacy: bool = False


# ═══════════════════════════════════════════════════════════════════════
# Entry encoding
# ═══════════════════════════════════════════════════════════════════════

def encode_entry(entry: IndexedFile) -> dict:
    return {
        "path": entry.path,
        "last_modified": entry.last_modified,
        "symbols": entry.symbols,
        "content": entry.content,
        "normalized_content": entry.normalized_content,
    }


def decode_entry(data: dict) -> IndexedFile:
    """Decode one entry, raising ValueError if it is malformed."""
    try:
        content = data["content"]
        normalized = data.get("normalized_content")
        if normalized is None:
            normalized = content.lower()
        return IndexedFile(
            path=data["path"],
            last_modified=float(data.get("last_modified", 0.0)),
            symbols=list(data.get("symbols") or []),
            content=content,
            normalized_content=normalized,
        )
    except (KeyError, TypeError, AttributeError) as e:
        raise ValueError(f"malformed entry: {e}") from e


def _dumps(value) -> str:
    # ASCII-only output keeps encoded length equal to byte size
    return json.dumps(value, separators=(",", ":"))


def _write_atomic(path: Path, lines: Iterator[str]) -> int:
    """Write lines to a temp file, then rename over `path`. Returns bytes written."""
    tmp = path.with_name(path.name + ".tmp")
    written = 0
    try:
        with open(tmp, "w", encoding="utf-8", newline="\n") as f:
            for line in lines:
                f.write(line)
                f.write("\n")
                written += len(line) + 1
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    return written


class _Oversized(Exception):
    """An encoding tier cannot hold the entries within its ceiling."""


class UnitLines:
    """Iterator over the lines after a unit header. Owns the open file."""

    def __init__(self, f):
        self._f = f

    def __iter__(self):
        return self

    def __next__(self) -> str:
        line = self._f.readline()
        if not line:
            raise StopIteration
        return line.rstrip("\n")

    def close(self) -> None:
        self._f.close()


# ═══════════════════════════════════════════════════════════════════════
# Unit encodings
# ═══════════════════════════════════════════════════════════════════════

class UnitEncoding:
    """One strategy for laying out a domain's entry list on disk."""

    name = ""

    def __init__(self, store: "IndexStore"):
        self.store = store
        self.config = store.config

    def write(self, unit: Path, entries: List[dict]) -> UnitReport:
        raise NotImplementedError

    def read(self, unit: Path, header: dict, lines: Iterator[str]) -> List[IndexedFile]:
        raise NotImplementedError


class DirectEncoding(UnitEncoding):
    """A single encoded list."""

    name = "direct"

    def write(self, unit: Path, entries: List[dict]) -> UnitReport:
        if len(entries) > self.config.direct_max_entries:
            raise _Oversized(f"{len(entries)} entries exceed direct threshold")
        text = _dumps(entries)
        if len(text) > self.config.max_unit_chars:
            raise _Oversized(f"direct encoding is {len(text)} chars")
        header = _dumps({"encoding": self.name, "entries": len(entries)})
        _write_atomic(unit, iter([header, text]))
        return UnitReport(encoding=self.name, entries=len(entries))

    def read(self, unit: Path, header: dict, lines: Iterator[str]) -> List[IndexedFile]:
        payload = next(lines, None)
        if payload is None:
            raise CorruptUnitError(unit, "missing payload")
        return _decode_list(unit, payload)


class ChunkedEncoding(UnitEncoding):
    """Bounded sub-lists, each encoded separately and stored one per line."""

    name = "chunked"

    def write(self, unit: Path, entries: List[dict]) -> UnitReport:
        chunks = list(self._encode_chunks(entries))
        total = sum(len(c) for c in chunks)
        if total > self.config.max_chunked_chars:
            raise _Oversized(f"chunked encoding is {total} chars")
        header = _dumps({
            "encoding": self.name,
            "entries": len(entries),
            "chunkCount": len(chunks),
        })
        _write_atomic(unit, iter([header, *chunks]))
        return UnitReport(encoding=self.name, entries=len(entries))

    def _encode_chunks(self, entries: List[dict]) -> Iterator[str]:
        """
        Encode entries in chunks of at most `chunk_entries`.

        A chunk that is still over the unit ceiling is halved until it fits.
        A single entry that cannot fit escalates to the next tier.
        """
        size = max(1, self.config.chunk_entries)
        running = 0
        pending: List[List[dict]] = [entries[i:i + size] for i in range(0, len(entries), size)]
        pending.reverse()

        while pending:
            chunk = pending.pop()
            text = _dumps(chunk)
            if len(text) > self.config.max_unit_chars:
                if len(chunk) == 1:
                    raise _Oversized(f"entry {chunk[0].get('path')} alone is {len(text)} chars")
                half = len(chunk) // 2
                pending.append(chunk[half:])
                pending.append(chunk[:half])
                continue
            running += len(text)
            if running > self.config.max_chunked_chars:
                raise _Oversized(f"chunked encoding exceeds {self.config.max_chunked_chars} chars")
            yield text

    def read(self, unit: Path, header: dict, lines: Iterator[str]) -> List[IndexedFile]:
        expected = int(header.get("chunkCount", 0))
        entries: List[IndexedFile] = []
        count = 0
        for line in lines:
            if not line.strip():
                continue
            entries.extend(_decode_list(unit, line))
            count += 1
        if count != expected:
            raise CorruptUnitError(unit, f"expected {expected} chunks, found {count}")
        return entries


class MultiFileEncoding(UnitEncoding):
    """
    A descriptor unit plus one part file per slice of entries.

    Parts are size-checked independently; an oversized part is truncated
    (logged as degraded) instead of failing the whole save.
    """

    name = "multi"

    def write(self, unit: Path, entries: List[dict]) -> UnitReport:
        per_file = max(1, self.config.entries_per_file)
        domain = self.store.domain_of(unit)
        written = 0
        degraded = False
        file_count = 0

        for start in range(0, len(entries), per_file):
            part = entries[start:start + per_file]
            text, kept = self._fit_part(part)
            if kept < len(part):
                degraded = True
                logger.warning(
                    f"Index part {file_count} of {unit.name} truncated to "
                    f"{kept}/{len(part)} entries (size ceiling)"
                )
            part_path = self.store.part_path(unit, file_count)
            header = _dumps({"encoding": "part", "index": file_count, "entries": kept})
            _write_atomic(part_path, iter([header, text]))
            written += kept
            file_count += 1

        descriptor = _dumps({
            "encoding": self.name,
            "entries": len(entries),
            "fileCount": file_count,
            "entriesPerFile": per_file,
        })
        _write_atomic(unit, iter([descriptor]))
        logger.info(f"Saved {domain} as {file_count} part files ({written} entries)")
        return UnitReport(encoding=self.name, entries=written, degraded=degraded)

    def _fit_part(self, part: List[dict]) -> Tuple[str, int]:
        """Shrink a part from the end until it fits the part ceiling."""
        keep = len(part)
        while True:
            text = _dumps(part[:keep])
            if len(text) <= self.config.max_part_chars or keep == 0:
                return text, keep
            keep //= 2

    def read(self, unit: Path, header: dict, lines: Iterator[str]) -> List[IndexedFile]:
        file_count = int(header.get("fileCount", 0))
        entries: List[IndexedFile] = []

        for i in range(file_count):
            part_path = self.store.part_path(unit, i)
            try:
                part_header, part_lines = self.store.open_unit(
                    part_path, self.config.max_part_chars + _HEADER_SLACK
                )
                try:
                    if part_header.get("encoding") != "part":
                        raise CorruptUnitError(part_path, "not a part file")
                    payload = next(part_lines, None)
                    if payload is None:
                        raise CorruptUnitError(part_path, "missing payload")
                    entries.extend(_decode_list(part_path, payload))
                finally:
                    part_lines.close()
            except FileNotFoundError:
                logger.warning(f"Index part missing: {part_path.name}")
            except (CorruptUnitError, ValueError) as e:
                # A bad part costs only its own entries
                handle_error(e, part_path, "load_part")
                part_path.unlink(missing_ok=True)

        return entries


UNIT_ENCODINGS: Dict[str, Type[UnitEncoding]] = {
    DirectEncoding.name: DirectEncoding,
    ChunkedEncoding.name: ChunkedEncoding,
    MultiFileEncoding.name: MultiFileEncoding,
}

# Write tiers, tried in order
WRITE_TIERS: Tuple[Type[UnitEncoding], ...] = (DirectEncoding, ChunkedEncoding, MultiFileEncoding)


def _decode_list(unit: Path, payload: str) -> List[IndexedFile]:
    try:
        raw = json.loads(payload)
    except json.JSONDecodeError as e:
        raise CorruptUnitError(unit, f"unparsable payload: {e}") from e
    if not isinstance(raw, list):
        raise CorruptUnitError(unit, "payload is not a list")
    try:
        return [decode_entry(item) for item in raw]
    except ValueError as e:
        raise CorruptUnitError(unit, str(e)) from e


# ═══════════════════════════════════════════════════════════════════════
# Layouts (selected by on-disk markers)
# ═══════════════════════════════════════════════════════════════════════

class Layout:
    """A persisted index layout, detected from files on disk."""

    def __init__(self, store: "IndexStore"):
        self.store = store

    def detect(self, identity: str) -> bool:
        raise NotImplementedError

    def read_metadata(self, identity: str) -> dict:
        """Return normalized metadata (current key names)."""
        raise NotImplementedError

    def read_domains(self, identity: str, index: Index, metadata: dict) -> List[Domain]:
        """Fill the domains of `index`. Returns domains that came back short."""
        raise NotImplementedError

    def after_load(self, index: Index) -> None:
        pass


class CurrentLayout(Layout):
    """Metadata file plus one unit per domain."""

    def detect(self, identity: str) -> bool:
        return self.store.meta_path(identity).is_file()

    def read_metadata(self, identity: str) -> dict:
        path = self.store.meta_path(identity)
        with open(path, "r", encoding="utf-8") as f:
            metadata = json.load(f)
        if not isinstance(metadata, dict):
            raise CorruptUnitError(path, "metadata is not an object")
        _number(path, metadata.get("lastBuilt"), "lastBuilt")
        _domain_counts(path, metadata.get("domains"))
        return metadata

    def read_domains(self, identity: str, index: Index, metadata: dict) -> List[Domain]:
        counts = metadata.get("domains") or {}
        short: List[Domain] = []

        for domain in DOMAIN_ORDER:
            entries = self.store.read_unit(self.store.unit_path(identity, domain))
            target = index.domain(domain)
            for entry in entries:
                target[entry.path] = entry

            expected = int((counts.get(domain.value) or {}).get("entries", 0))
            if expected > 0 and len(target) < expected:
                logger.warning(
                    f"Domain {domain.value} loaded {len(target)}/{expected} entries"
                )
                short.append(domain)

        return short


class LegacyBlobLayout(Layout):
    """
    Deprecated single JSON blob holding everything.

    Domain maps are stored as [path, record] pairs with camelCase keys.
    Migrated to the current layout as soon as it loads successfully.
    """

    def detect(self, identity: str) -> bool:
        return self.store.legacy_path(identity).is_file()

    def read_metadata(self, identity: str) -> dict:
        path = self.store.legacy_path(identity)
        if path.stat().st_size > self.store.max_legacy_bytes:
            raise CorruptUnitError(path, "legacy index is oversized")
        with open(path, "r", encoding="utf-8") as f:
            blob = json.load(f)
        if not isinstance(blob, dict):
            raise CorruptUnitError(path, "legacy index is not an object")

        self._blob = blob
        return {
            "layout": LAYOUT_VERSION,
            "formatVersion": blob.get("version", "1.0"),
            "lastBuilt": _number(path, blob.get("lastUpdated"), "lastUpdated") / 1000.0,
            "workspaceIdentity": blob.get("workspacePath", ""),
            "manifestFingerprint": blob.get("goModHash", ""),
            "toolchainFingerprint": blob.get("goVersion", ""),
        }

    def read_domains(self, identity: str, index: Index, metadata: dict) -> List[Domain]:
        path = self.store.legacy_path(identity)
        for domain in DOMAIN_ORDER:
            target = index.domain(domain)
            pairs = self._blob.get(domain.value) or []
            if not isinstance(pairs, list):
                handle_error(CorruptUnitError(path, f"{domain.value} is not a list"), path, "legacy_entry")
                continue
            for pair in pairs:
                try:
                    _, record = pair
                    entry = decode_entry({
                        "path": record["path"],
                        "last_modified": (record.get("lastModified") or 0) / 1000.0,
                        "symbols": record.get("symbols"),
                        "content": record["content"],
                        "normalized_content": record.get("searchContent"),
                    })
                except (ValueError, KeyError, TypeError) as e:
                    handle_error(CorruptUnitError(path, str(e)), path, "legacy_entry")
                    continue
                target[entry.path] = entry
        self._blob = {}
        return []

    def after_load(self, index: Index) -> None:
        """Rewrite in the current layout, then drop the blob."""
        path = self.store.legacy_path(index.workspace_identity)
        self.store.save(index)
        path.unlink(missing_ok=True)
        logger.info(f"Migrated legacy index {path.name} to layout {LAYOUT_VERSION}")


def _number(path: Path, value, field: str) -> float:
    """A numeric metadata field; missing reads as 0."""
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise CorruptUnitError(path, f"{field} is not a number: {value!r}")
    return float(value)


def _domain_counts(path: Path, value) -> Dict[str, dict]:
    """Per-domain entry counts recorded in metadata."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise CorruptUnitError(path, "domains is not an object")
    for name, info in value.items():
        if not isinstance(info, dict):
            raise CorruptUnitError(path, f"counts for {name} are not an object")
        _number(path, info.get("entries"), f"{name} entries")
    return value


# Newest first
LAYOUTS: Tuple[Type[Layout], ...] = (CurrentLayout, LegacyBlobLayout)


# ═══════════════════════════════════════════════════════════════════════
# Store
# ═══════════════════════════════════════════════════════════════════════

class IndexStore:
    """
    Saves and loads indexes under the configured storage directory.

    A given workspace identity always resolves to the same file set, so
    separate workspaces never collide.
    """

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()
        self.storage_dir = self.config.storage_dir
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    # --- Naming ---

    def prefix(self, identity: str) -> str:
        return f"{INDEX_PREFIX}{storage_key(identity)}"

    def meta_path(self, identity: str) -> Path:
        return self.storage_dir / f"{self.prefix(identity)}.meta.json"

    def unit_path(self, identity: str, domain: Domain) -> Path:
        return self.storage_dir / f"{self.prefix(identity)}.{domain.value}.json"

    def part_path(self, unit: Path, number: int) -> Path:
        return unit.with_name(f"{unit.stem}.part{number}.json")

    def legacy_path(self, identity: str) -> Path:
        """
        The deprecated blob for an identity.

        Blobs were named with either the current key or the older 32-bit
        string hash; whichever exists is returned.
        """
        candidates = [
            self.storage_dir / f"{LEGACY_PREFIX}{key}.json"
            for key in (storage_key(identity), legacy_hash(identity))
        ]
        for path in candidates:
            if path.is_file():
                return path
        return candidates[0]

    def domain_of(self, unit: Path) -> str:
        return unit.stem.rsplit(".", 1)[-1]

    @property
    def max_unit_bytes(self) -> int:
        return self.config.max_chunked_chars + _HEADER_SLACK

    @property
    def max_legacy_bytes(self) -> int:
        return 3 * self.config.max_chunked_chars + _HEADER_SLACK

    # --- Save ---

    def save(self, index: Index, domains: Optional[Sequence[Domain]] = None) -> Dict[str, UnitReport]:
        """
        Persist the index. With `domains`, only those units are rewritten.

        Never raises for a single oversized or unwritable unit: that unit is
        dropped with a warning and the rest of the save proceeds.
        """
        identity = index.workspace_identity
        selected = list(domains) if domains is not None else list(DOMAIN_ORDER)
        previous = self._previous_counts(identity)
        reports: Dict[str, UnitReport] = {}

        for domain in selected:
            reports[domain.value] = self._save_unit(identity, domain, index.domain(domain))

        counts = {}
        for domain in DOMAIN_ORDER:
            if domain.value in reports:
                report = reports[domain.value]
                counts[domain.value] = {"entries": report.entries, "encoding": report.encoding}
            else:
                counts[domain.value] = previous.get(
                    domain.value, {"entries": len(index.domain(domain)), "encoding": "direct"}
                )

        metadata = {
            "layout": LAYOUT_VERSION,
            "formatVersion": index.format_version,
            "lastBuilt": index.last_built,
            "savedAt": time.time(),
            "workspaceIdentity": identity,
            "manifestFingerprint": index.manifest_fingerprint,
            "toolchainFingerprint": index.toolchain_fingerprint,
            "domains": counts,
        }
        try:
            _write_atomic(self.meta_path(identity), iter([_dumps(metadata)]))
        except OSError as e:
            raise StorageError(f"cannot write index metadata: {e}") from e

        # The current layout supersedes any deprecated blob
        self.legacy_path(identity).unlink(missing_ok=True)
        return reports

    def _previous_counts(self, identity: str) -> dict:
        try:
            with open(self.meta_path(identity), "r", encoding="utf-8") as f:
                domains = (json.load(f) or {}).get("domains")
        except (OSError, ValueError, AttributeError):
            return {}
        return domains if isinstance(domains, dict) else {}

    def _save_unit(self, identity: str, domain: Domain, files: Dict[str, IndexedFile]) -> UnitReport:
        unit = self.unit_path(identity, domain)
        entries = [encode_entry(f) for f in list(files.values())]

        for tier in WRITE_TIERS:
            try:
                report = tier(self).write(unit, entries)
            except _Oversized as e:
                logger.info(f"{domain.value}: {tier.name} encoding too large ({e}), escalating")
                continue
            except OSError as e:
                logger.warning(f"Failed to write {unit.name}: {e}; dropping unit")
                self._remove_unit(unit)
                return UnitReport(encoding="dropped", entries=0, degraded=True)

            if report.encoding != MultiFileEncoding.name:
                self._remove_parts(unit)
            else:
                self._remove_parts(unit, keep=self._part_count(unit))
            return report

        # Unreachable in practice: the multi-file tier always truncates to fit
        logger.warning(f"No encoding could hold {domain.value}; dropping unit")
        self._remove_unit(unit)
        return UnitReport(encoding="dropped", entries=0, degraded=True)

    def _part_count(self, unit: Path) -> int:
        try:
            header, lines = self.open_unit(unit, self.max_unit_bytes)
            lines.close()
            return int(header.get("fileCount", 0))
        except (OSError, CorruptUnitError, ValueError):
            return 0

    def _remove_parts(self, unit: Path, keep: int = 0) -> None:
        for part in unit.parent.glob(f"{unit.stem}.part*.json"):
            try:
                number = int(part.stem.rsplit(".part", 1)[-1])
            except ValueError:
                number = -1
            if number < 0 or number >= keep:
                part.unlink(missing_ok=True)

    def _remove_unit(self, unit: Path) -> None:
        unit.unlink(missing_ok=True)
        self._remove_parts(unit)

    # --- Load ---

    def load(
        self,
        identity: str,
        manifest_fingerprint: str,
        toolchain_fingerprint: str,
    ) -> LoadOutcome:
        """
        Load the index for a workspace identity.

        Validation order: layout, workspace identity, format version,
        manifest fingerprint, toolchain fingerprint. Any mismatch is a
        cache miss, never an error.
        """
        layout = self._detect_layout(identity)
        if layout is None:
            return LoadOutcome.miss("no persisted index")

        try:
            metadata = layout.read_metadata(identity)
        except (OSError, ValueError, CorruptUnitError) as e:
            handle_error(e, self.meta_path(identity), "load_metadata")
            self.delete(identity)
            return LoadOutcome.miss("unreadable metadata")

        reason = self._validate(metadata, identity, manifest_fingerprint, toolchain_fingerprint)
        if reason:
            logger.info(f"Persisted index rejected: {reason}")
            return LoadOutcome.miss(reason)

        index = Index(
            workspace_identity=identity,
            format_version=metadata.get("formatVersion", FORMAT_VERSION),
            last_built=float(metadata.get("lastBuilt") or 0.0),
            manifest_fingerprint=metadata.get("manifestFingerprint", ""),
            toolchain_fingerprint=metadata.get("toolchainFingerprint", ""),
        )
        short = layout.read_domains(identity, index, metadata)
        if short:
            names = ", ".join(d.value for d in short)
            return LoadOutcome(
                status=LoadStatus.INCOMPLETE,
                reason=f"incomplete domains: {names}",
                index=index,
            )

        try:
            layout.after_load(index)
        except (OSError, StorageError) as e:
            logger.warning(f"Index loaded but post-load step failed: {e}")

        logger.info(f"Loaded index for {identity}: {index.counts()}")
        return LoadOutcome(status=LoadStatus.LOADED, index=index)

    def _validate(
        self,
        metadata: dict,
        identity: str,
        manifest_fingerprint: str,
        toolchain_fingerprint: str,
    ) -> str:
        if metadata.get("layout") != LAYOUT_VERSION:
            return f"layout {metadata.get('layout')!r} is not {LAYOUT_VERSION}"
        if metadata.get("workspaceIdentity") != identity:
            return "index belongs to a different workspace"
        if metadata.get("formatVersion") != FORMAT_VERSION:
            return f"format {metadata.get('formatVersion')!r} is not {FORMAT_VERSION}"
        if metadata.get("manifestFingerprint", "") != manifest_fingerprint:
            return "dependency manifests changed"
        if metadata.get("toolchainFingerprint", "") != toolchain_fingerprint:
            return "Go toolchain changed"
        return ""

    def open_unit(self, path: Path, max_bytes: int) -> Tuple[dict, UnitLines]:
        """
        Open a unit, check its size and parse its header line.

        Returns the header and a reader over the remaining lines; the
        caller must close the reader.
        """
        size = path.stat().st_size
        if size > max_bytes:
            raise CorruptUnitError(path, f"{size} bytes exceeds {max_bytes}")

        f = open(path, "r", encoding="utf-8")
        try:
            first = f.readline()
            header = json.loads(first) if first.strip() else None
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            f.close()
            raise CorruptUnitError(path, f"unparsable header: {e}") from e
        if not isinstance(header, dict):
            f.close()
            raise CorruptUnitError(path, "missing header")

        return header, UnitLines(f)

    def read_unit(self, unit: Path) -> List[IndexedFile]:
        """
        Read one domain unit. A corrupt unit is deleted and reads as empty.
        """
        try:
            header, lines = self.open_unit(unit, self.max_unit_bytes)
        except FileNotFoundError:
            return []
        except (OSError, CorruptUnitError) as e:
            handle_error(e, unit, "load_unit")
            self._remove_unit(unit)
            return []

        try:
            encoding = UNIT_ENCODINGS.get(header.get("encoding", ""))
            if encoding is None:
                raise CorruptUnitError(unit, f"unknown encoding {header.get('encoding')!r}")
            return encoding(self).read(unit, header, lines)
        except (CorruptUnitError, ValueError, OSError) as e:
            handle_error(e, unit, "load_unit")
            self._remove_unit(unit)
            return []
        finally:
            lines.close()

    # --- Housekeeping ---

    def delete(self, identity: str) -> None:
        """Remove every persisted file for a workspace identity."""
        self.meta_path(identity).unlink(missing_ok=True)
        for domain in DOMAIN_ORDER:
            self._remove_unit(self.unit_path(identity, domain))
        self.legacy_path(identity).unlink(missing_ok=True)

    def _detect_layout(self, identity: str) -> Optional[Layout]:
        """Newest layout present on disk, if any."""
        for cls in LAYOUTS:
            layout = cls(self)
            if layout.detect(identity):
                return layout
        return None


def list_workspace_indexes(storage_dir: Path) -> List[PersistedIndexInfo]:
    """
    List persisted indexes in a storage directory, newest first.

    Unreadable or corrupt entries are skipped.
    """
    storage_dir = Path(storage_dir)
    indexes: List[PersistedIndexInfo] = []
    if not storage_dir.is_dir():
        return indexes

    for meta in storage_dir.glob(f"{INDEX_PREFIX}*.meta.json"):
        prefix = meta.name[:-len(".meta.json")]
        try:
            with open(meta, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise CorruptUnitError(meta, "metadata is not an object")
            size = sum(p.stat().st_size for p in storage_dir.glob(f"{prefix}.*"))
            last_built = _number(meta, data.get("lastBuilt"), "lastBuilt")
            info = _info(data.get("workspaceIdentity"), meta, last_built, size)
        except (OSError, ValueError, OverflowError, CorruptUnitError) as e:
            logger.debug(f"Skipping unreadable index metadata {meta.name}: {e}")
            continue
        indexes.append(info)

    for blob in storage_dir.glob(f"{LEGACY_PREFIX}*.json"):
        try:
            with open(blob, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise CorruptUnitError(blob, "legacy index is not an object")
            last_built = _number(blob, data.get("lastUpdated"), "lastUpdated") / 1000.0
            info = _info(data.get("workspacePath"), blob, last_built, blob.stat().st_size)
        except (OSError, ValueError, OverflowError, CorruptUnitError) as e:
            logger.debug(f"Skipping unreadable legacy index {blob.name}: {e}")
            continue
        info.legacy = True
        indexes.append(info)

    return sorted(indexes, key=lambda i: i.last_built, reverse=True)


def _info(identity, path: Path, last_built: float, size: int) -> PersistedIndexInfo:
    identity = identity if isinstance(identity, str) else ""
    first_root = identity.split("::")[0] if identity else ""
    if not identity:
        name = "Unknown"
    elif "::" in identity:
        name = f"Multi-root ({len(identity.split('::'))} folders)"
    else:
        name = Path(first_root).name or first_root
    return PersistedIndexInfo(
        workspace_name=name,
        workspace_identity=identity,
        path=path,
        last_built=datetime.fromtimestamp(float(last_built or 0.0)),
        size_bytes=size,
    )
