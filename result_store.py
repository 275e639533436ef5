"""
Dice Reach - result_store.py

Persistent key -> bool cache for reachability results.

On disk the cache is gzip-compressed UTF-8 in one of two layouts:
  - bulk:   a single JSON object  {"2,3|6": true, ...}
  - stream: one JSON record per line  ["2,3|6", true]

Small caches are written in bulk. Caches with STREAM_THRESHOLD or more
entries are streamed record by record so the whole JSON document never has
to sit in memory. Loading sniffs the first line and accepts either layout.

Saving merges with whatever is already on disk (in-memory entries win),
writes to a temporary file, and only renames it over the real path once the
gzip trailer is flushed. There is no locking: one writer at a time.
"""

from __future__ import annotations
from dataclasses import dataclass
from itertools import chain
from typing import Dict, Iterable, Iterator, Optional, Tuple
from tqdm import tqdm
import gzip
import json
import os

# ============================================================================ #
#                              CONFIGURATION                                   #
# ============================================================================ #

STREAM_THRESHOLD = 200_000
PROGRESS_EVERY = 50_000

# ANSI color codes
GREEN = '\033[92m'
RED = '\033[91m'
YELLOW = '\033[93m'
RESET = '\033[0m'


# ============================================================================ #
#                              STORE                                           #
# ============================================================================ #

class ResultStore:
    """In-memory cache of reachability results keyed by canonical key."""

    __slots__ = ("_entries",)

    def __init__(self, entries: Optional[Dict[str, bool]] = None) -> None:
        self._entries: Dict[str, bool] = dict(entries) if entries else {}

    def get(self, key: str) -> Optional[bool]:
        return self._entries.get(key)

    def set(self, key: str, value: bool) -> None:
        self._entries[key] = bool(value)

    def update(self, other) -> None:
        """Merge another store or mapping in; its values win on collision."""
        for key, value in other.items():
            self._entries[key] = bool(value)

    def items(self) -> Iterable[Tuple[str, bool]]:
        return self._entries.items()

    def copy(self) -> ResultStore:
        return ResultStore(self._entries)

    def to_dict(self) -> Dict[str, bool]:
        return dict(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other) -> bool:
        if isinstance(other, ResultStore):
            return self._entries == other._entries
        return NotImplemented

    def __repr__(self) -> str:
        return f"ResultStore({len(self._entries)} entries)"


@dataclass
class SaveOutcome:
    path: str
    saved: bool
    entries: int = 0
    streamed: bool = False
    error: Optional[str] = None


# ============================================================================ #
#                              READING                                         #
# ============================================================================ #

def _check_entry(key, value, where: str) -> None:
    if not isinstance(key, str):
        raise ValueError(f"{where}: key {key!r} is not a string")
    if not isinstance(value, bool):
        raise ValueError(f"{where}: value for {key!r} is not a boolean")


def _iter_records(lines: Iterator[str]) -> Iterator[Tuple[str, bool]]:
    for line_no, line in enumerate(lines, 1):
        line = line.strip()
        if not line:
            continue
        record = json.loads(line)
        if not isinstance(record, list) or len(record) != 2:
            raise ValueError(f"line {line_no}: expected [key, value] record")
        key, value = record
        _check_entry(key, value, f"line {line_no}")
        yield key, value


def read_entries(path: str) -> Dict[str, bool]:
    """Read a cache file in either layout. Raises on any malformed content."""
    with gzip.open(path, 'rt', encoding='utf-8') as f:
        first = f.readline()
        if not first:
            raise ValueError("cache file is empty")
        if first.lstrip().startswith('{'):
            data = json.loads(first + f.read())
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object")
            for key, value in data.items():
                _check_entry(key, value, "object")
            return data
        return dict(_iter_records(chain([first], f)))


def _load_entries(path: str) -> Dict[str, bool]:
    if not os.path.exists(path):
        return {}
    try:
        return read_entries(path)
    except Exception as e:
        print(f"{YELLOW}Cache load failed: {e}, starting with an empty cache{RESET}")
        return {}


def load_store(path: str) -> ResultStore:
    """Load the cache at path.

    A missing file gives an empty store. A corrupt or unreadable file also
    gives an empty store, with a warning, so the run can carry on.
    """
    if not os.path.exists(path):
        print(f"No cache at {path}, starting empty")
        return ResultStore()
    print(f"Loading cache from {path}...")
    store = ResultStore(_load_entries(path))
    print(f"Loaded {len(store):,} cached results")
    return store


# ============================================================================ #
#                              WRITING                                         #
# ============================================================================ #

class BulkWriter:
    """Serialize everything as one JSON object, compress, write once."""

    streamed = False

    def write(self, path: str, entries: Dict[str, bool]) -> None:
        payload = json.dumps(entries, separators=(',', ':')).encode('utf-8')
        data = gzip.compress(payload)
        with open(path, 'wb') as raw:
            raw.write(data)
            raw.flush()
            os.fsync(raw.fileno())


class StreamWriter:
    """Stream one [key, value] record per line through a gzip writer."""

    streamed = True

    def __init__(self, progress_every: int = PROGRESS_EVERY) -> None:
        self.progress_every = progress_every

    def write(self, path: str, entries: Dict[str, bool]) -> None:
        with open(path, 'wb') as raw:
            with gzip.GzipFile(fileobj=raw, mode='wb') as gz:
                bar = tqdm(entries.items(), total=len(entries), desc="Streaming cache",
                           miniters=self.progress_every, ascii=" ▖▘▝▗▚▞█",
                           bar_format='{desc}: |{bar:30}| {n_fmt}/{total_fmt}')
                for key, value in bar:
                    gz.write((json.dumps([key, value]) + '\n').encode('utf-8'))
            # GzipFile.close() writes the trailer but leaves raw open
            raw.flush()
            os.fsync(raw.fileno())


def select_writer(entry_count: int, stream_threshold: int = STREAM_THRESHOLD):
    # an empty stream would leave a file with no content to load back
    if entry_count and entry_count >= stream_threshold:
        return StreamWriter()
    return BulkWriter()


def save_store(path: str, store: ResultStore,
               stream_threshold: int = STREAM_THRESHOLD) -> SaveOutcome:
    """Merge store into the cache file at path and write the union back.

    Entries in ``store`` take precedence over those already on disk. A
    failed write is reported in the returned outcome; it is never retried.
    """
    entries = _load_entries(path)
    entries.update(store.items())
    writer = select_writer(len(entries), stream_threshold)

    print(f"Saving cache to {path} ({len(entries):,} entries)...")
    tmp_path = f"{path}.tmp"
    try:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        writer.write(tmp_path, entries)
        os.replace(tmp_path, path)
    except Exception as e:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        print(f"{RED}Cache save failed: {e}{RESET}")
        return SaveOutcome(path=path, saved=False, entries=len(entries),
                           streamed=writer.streamed, error=str(e))

    print(f"{GREEN}Cache saved!{RESET}")
    return SaveOutcome(path=path, saved=True, entries=len(entries), streamed=writer.streamed)
