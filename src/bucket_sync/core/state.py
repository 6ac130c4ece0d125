"""Persistent cache of file content hashes keyed by path and modification time."""

import logging
import os
import stat
import tempfile
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, List, Optional, Tuple, Union

from .exceptions import CacheCorruptionError
from .hasher import hash_file
from .models import CacheEntry

logger = logging.getLogger(__name__)

SEP = "\t"
# Characters the line format has no way to escape.
UNSAFE_PATH_CHARS = (SEP, "\n", "\r")


def last_modified_millis(file_path: Union[str, Path]) -> int:
    """Return the file's modification time in whole milliseconds."""
    return os.stat(file_path).st_mtime_ns // 1_000_000


class StateStore:
    """Cache of ``path -> (last modified, sha1)`` persisted as a tab separated file.

    The backing file holds one ``path<TAB>mtime_ms<TAB>sha1`` record per line.
    :meth:`close` rewrites it through a temporary file in the same directory
    followed by an atomic rename, so the file on disk is always a complete
    snapshot. Use the store as a context manager to flush on every exit path.
    """

    def __init__(
        self,
        src: Union[str, Path],
        *,
        strict: bool = False,
        hasher: Optional[Callable[[Union[str, Path]], str]] = None,
    ) -> None:
        self.src = Path(src)
        self.strict = strict
        self.hasher = hasher or hash_file
        self._lock = Lock()
        self._map: Dict[str, Tuple[int, str]] = {}
        self._closed = False
        self._load()

    @classmethod
    def open(cls, src: Union[str, Path], **kwargs) -> "StateStore":
        return cls(src, **kwargs)

    def __enter__(self) -> "StateStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._map)

    def __contains__(self, file_path: str) -> bool:
        with self._lock:
            return file_path in self._map

    def _load(self) -> None:
        if not self.src.exists():
            logger.info(f"No hash cache at {self.src}, starting empty")
            return

        skipped = 0
        with open(self.src, "rb") as f:
            for line_number, raw in enumerate(f, start=1):
                raw = raw.rstrip(b"\r\n")
                if not raw:
                    continue
                try:
                    # UnicodeDecodeError is a ValueError.
                    fields = raw.decode("utf-8").split(SEP)
                    if len(fields) != 3 or not fields[0] or not fields[2]:
                        raise ValueError(f"expected 3 fields, got {len(fields)}")
                    ts = int(fields[1], 10)
                except ValueError as e:
                    if self.strict:
                        raise CacheCorruptionError(
                            f"Malformed record in {self.src}: {e}", line_number
                        ) from e
                    logger.warning(f"{self.src}:{line_number}: skipping malformed record ({e})")
                    skipped += 1
                    continue
                self._map[fields[0]] = (ts, fields[2])

        logger.info(
            f"Loaded {len(self._map)} cached hashes from {self.src}"
            + (f" ({skipped} malformed lines skipped)" if skipped else "")
        )

    def get(self, file_path: str) -> Optional[CacheEntry]:
        """Return the cached entry for ``file_path`` if any."""
        with self._lock:
            row = self._map.get(file_path)
        if row is None:
            return None
        return CacheEntry(file_path=file_path, last_modified=row[0], content_hash=row[1])

    def entries(self) -> List[CacheEntry]:
        with self._lock:
            items = list(self._map.items())
        return [
            CacheEntry(file_path=k, last_modified=ts, content_hash=sha1)
            for k, (ts, sha1) in items
        ]

    def hash_for(self, file_path: str) -> str:
        """Return the content hash of ``file_path``, rehashing only when it changed."""
        last_mod = last_modified_millis(file_path)

        if last_mod <= 0:
            logger.warning(f"{file_path} has an invalid last modified time {last_mod}")
            return self.hasher(file_path)

        if any(c in file_path for c in UNSAFE_PATH_CHARS):
            logger.warning(f"{file_path!r} cannot be stored in the hash cache")
            return self.hasher(file_path)

        with self._lock:
            row = self._map.get(file_path)

        if row is not None and row[0] == last_mod:
            logger.debug(f"{file_path} hash is up to date")
            return row[1]

        logger.info(f"{file_path} has an out of date hash")
        sha1 = self.hasher(file_path)
        with self._lock:
            self._map[file_path] = (last_mod, sha1)
        return sha1

    def close(self) -> None:
        """Write all entries to a temp file and atomically rename it over the cache."""
        if self._closed:
            return

        with self._lock:
            rows = [SEP.join((k, str(ts), sha1)) for k, (ts, sha1) in self._map.items()]

        parent = self.src.resolve().parent
        parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".bucket-sync-", suffix=".tmp", dir=parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
                for row in rows:
                    f.write(row)
                    f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            if self.src.exists():
                # mkstemp creates 0600; keep the permissions of the file being replaced.
                os.chmod(tmp, stat.S_IMODE(os.stat(self.src).st_mode))
            os.replace(tmp, self.src)
        except BaseException:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass
            raise

        self._closed = True
        logger.info(f"Saved {len(rows)} cached hashes to {self.src}")
