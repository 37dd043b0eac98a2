"""Local mirror storage: safe path resolution and file writes.

Every write is confined to ``root/<folder>/``; a resolved target that
escapes the resolved root is refused before the filesystem is touched.
"""

import logging
import os
from datetime import UTC, datetime
from pathlib import Path

from sadis.errors import AccessDeniedError, LocalIOError
from sadis.schemas.ingest import LocalFileEntry

logger = logging.getLogger(__name__)


def _is_within(path: Path, root: Path) -> bool:
    """Separator-aware, case-sensitive prefix check on resolved paths."""
    root_str = str(root)
    path_str = str(path)
    if path_str == root_str:
        return True
    prefix = root_str if root_str.endswith(os.sep) else root_str + os.sep
    return path_str.startswith(prefix)


class LocalStore:
    """Writes fetched bytes under ``root/subfolder/filename``.

    Usage::

        store = LocalStore()
        path = store.write("/data/ingest", "OPMET", "a.dat", b"...")
    """

    def resolve(self, root: str | Path, subfolder: str, filename: str | None = None) -> Path:
        """Resolve the absolute target path and enforce the root guard.

        Raises:
            AccessDeniedError: If the resolved path is outside ``root``.
        """
        root_path = Path(root).resolve()
        target = root_path / subfolder
        if filename is not None:
            target = target / filename
        target = target.resolve()
        if target == root_path or not _is_within(target, root_path):
            raise AccessDeniedError(
                f"Access denied: {target} is outside the local root {root_path}"
            )
        return target

    def ensure_dir(self, root: str | Path, subfolder: str) -> Path:
        """Create ``root/subfolder`` and any missing ancestors. Idempotent."""
        directory = self.resolve(root, subfolder)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise LocalIOError(f"Could not create directory {directory}: {exc}") from exc
        return directory

    def write(self, root: str | Path, subfolder: str, filename: str, data: bytes) -> Path:
        """Write ``data`` to ``root/subfolder/filename``, overwriting any existing file.

        Returns:
            The absolute path written.

        Raises:
            AccessDeniedError: If the target escapes ``root`` (nothing is written).
            LocalIOError: On any OS-level failure.
        """
        target = self.resolve(root, subfolder, filename)
        folder_dir = self.resolve(root, subfolder)
        if not _is_within(target, folder_dir) or target == folder_dir:
            raise AccessDeniedError(
                f"Access denied: {filename!r} does not resolve inside folder {subfolder!r}"
            )

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise LocalIOError(f"Failed to write {target}: {exc}") from exc

        logger.debug("Wrote %d bytes to %s", len(data), target)
        return target

    def list_folder(self, root: str | Path, subfolder: str) -> list[LocalFileEntry]:
        """List regular files directly under ``root/subfolder``, sorted by name."""
        directory = self.resolve(root, subfolder)
        if not directory.is_dir():
            return []

        entries = []
        try:
            for item in sorted(directory.iterdir()):
                if not item.is_file():
                    continue
                stat = item.stat()
                entries.append(
                    LocalFileEntry(
                        name=item.name,
                        size=stat.st_size,
                        last_modified=datetime.fromtimestamp(stat.st_mtime, UTC),
                    )
                )
        except OSError as exc:
            raise LocalIOError(f"Could not list {directory}: {exc}") from exc
        return entries

    def list_all(
        self, root: str | Path, folder_names: list[str]
    ) -> dict[str, list[LocalFileEntry]]:
        """Map each folder name to its local file listing."""
        return {name: self.list_folder(root, name) for name in folder_names}
