"""JSON snapshot file used by the local fallback backends."""
from __future__ import annotations

import fcntl
import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from shared.utils.logging import get_logger

logger = get_logger(__name__)


class JsonSnapshotFile:
    """
    Reads and atomically rewrites one JSON document.

    Tracks the file identity (inode, mtime, size) so a reader in another
    process can tell when the writer has published a newer snapshot.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._seen: Optional[tuple[int, int, int]] = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def lock_path(self) -> Path:
        return self._path.with_name(self._path.name + ".lock")

    @contextmanager
    def locked(self) -> Iterator[None]:
        """
        Hold an exclusive flock on a sidecar file for a read-modify-write.

        Serializes writers across processes sharing the data dir. Callers reload
        the document inside the block so they act on the latest save.
        """
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fh = open(self.lock_path, "a+")
        except OSError as exc:
            # Same outcome as an unwritable snapshot: proceed unlocked, the save will fail open.
            logger.warning("json_snapshot_lock_unavailable", path=str(self.lock_path), error=str(exc))
            yield
            return
        with fh:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(fh.fileno(), fcntl.LOCK_UN)

    def _signature(self) -> Optional[tuple[int, int, int]]:
        # os.replace swaps the inode, so (inode, mtime_ns, size) changes on every
        # save even when two saves land within one mtime tick.
        try:
            st = self._path.stat()
            return st.st_ino, st.st_mtime_ns, st.st_size
        except OSError:
            return None

    def exists(self) -> bool:
        return self._signature() is not None

    def changed_on_disk(self) -> bool:
        return self._signature() != self._seen

    def load(self, default: Any) -> Any:
        """Return the parsed document, or default when missing or unreadable."""
        self._seen = self._signature()
        if self._seen is None:
            return default
        try:
            with self._path.open("r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning("json_snapshot_unreadable", path=str(self._path), error=str(exc))
            return default

    def save(self, document: Any) -> None:
        """Write via a temp file and os.replace so readers never see a partial file."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(document, fh, indent=2)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        self._seen = self._signature()
