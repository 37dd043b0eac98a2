"""Async FTP session wrapping the standard library ftplib client.

ftplib is synchronous; all public methods use asyncio.to_thread()
so a slow server only blocks the folder that is talking to it.

Usage::

    async with RemoteSession(server) as session:
        await session.change_directory("/opmet")
        for entry in await session.list():
            data = await session.fetch(entry.name)
"""

import asyncio
import ftplib
import io
import logging
from collections.abc import Iterator

from sadis.errors import ConnectError, NotFoundError, TransferError
from sadis.schemas.ingest import EntryKind, RemoteEntry, ServerDescriptor

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0


def _parse_mlsd(ftp: ftplib.FTP) -> Iterator[RemoteEntry]:
    """Yield entries from an MLSD listing (RFC 3659 facts)."""
    for name, facts in ftp.mlsd(facts=["type", "size"]):
        kind = facts.get("type", "").lower()
        if kind in ("cdir", "pdir") or name in (".", ".."):
            continue
        if kind == "file":
            size = facts.get("size", "")
            yield RemoteEntry(
                name=name,
                kind=EntryKind.FILE,
                size=int(size) if size.isdigit() else None,
            )
        elif kind == "dir":
            yield RemoteEntry(name=name, kind=EntryKind.DIRECTORY)
        else:
            yield RemoteEntry(name=name, kind=EntryKind.UNKNOWN)


def parse_list_line(line: str) -> RemoteEntry | None:
    """Parse one line of a LIST response (Unix or DOS style).

    Returns None for blank lines, ``total`` headers, and ``.``/``..``.
    """
    line = line.rstrip("\r\n")
    if not line.strip() or line.startswith("total "):
        return None

    # DOS: "01-15-24  09:30AM       <DIR>          name"
    dos = line.split(None, 3)
    if len(dos) == 4 and dos[0][:1].isdigit() and dos[0].count("-") == 2:
        name = dos[3]
        if name in (".", ".."):
            return None
        if dos[2].upper() == "<DIR>":
            return RemoteEntry(name=name, kind=EntryKind.DIRECTORY)
        if dos[2].isdigit():
            return RemoteEntry(name=name, kind=EntryKind.FILE, size=int(dos[2]))
        return RemoteEntry(name=name, kind=EntryKind.UNKNOWN)

    # Unix: "-rw-r--r--   1 owner group   1024 Jan 15 09:30 name"
    parts = line.split(None, 8)
    if len(parts) < 9:
        return None
    name = parts[8]
    if name in (".", ".."):
        return None
    marker = parts[0][0]
    if marker == "d":
        return RemoteEntry(name=name, kind=EntryKind.DIRECTORY)
    if marker == "-":
        size = int(parts[4]) if parts[4].isdigit() else None
        return RemoteEntry(name=name, kind=EntryKind.FILE, size=size)
    if marker == "l":
        # Symlinks list as "name -> target"; we cannot tell what they point at.
        return RemoteEntry(name=name.split(" -> ", 1)[0], kind=EntryKind.UNKNOWN)
    return RemoteEntry(name=name, kind=EntryKind.UNKNOWN)


def _parse_list(ftp: ftplib.FTP) -> Iterator[RemoteEntry]:
    lines: list[str] = []
    ftp.retrlines("LIST", lines.append)
    for line in lines:
        entry = parse_list_line(line)
        if entry is not None:
            yield entry


class RemoteSession:
    """One short-lived control connection to one FTP server.

    ``close()`` is idempotent and safe to call after any failure,
    including a failed ``connect()``.
    """

    def __init__(self, server: ServerDescriptor, *, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._server = server
        self._timeout = timeout
        self._ftp: ftplib.FTP | None = None
        self._closed = False

    async def __aenter__(self) -> "RemoteSession":
        try:
            await self.connect()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    @property
    def ftp(self) -> ftplib.FTP:
        if self._ftp is None:
            raise RuntimeError("RemoteSession is not connected. Call connect() first.")
        return self._ftp

    # --- Lifecycle ---

    async def connect(self) -> None:
        """Open the control connection and log in.

        Raises:
            ConnectError: On timeout, refused connection, or rejected login.
        """
        self._ftp = await asyncio.to_thread(self._connect)

    def _connect(self) -> ftplib.FTP:
        """Connect and login (sync, called via to_thread)."""
        server = self._server
        ftp = ftplib.FTP(timeout=self._timeout)
        try:
            ftp.connect(server.host, server.port)
        except ftplib.all_errors as exc:
            ftp.close()
            raise ConnectError(
                f"Could not connect to {server.host}:{server.port}: {exc}"
            ) from exc

        try:
            ftp.login(server.username, server.password or "")
        except ftplib.all_errors as exc:
            ftp.close()
            logger.error("FTP login failed for %s@%s", server.username, server.host)
            raise ConnectError(
                f"Login rejected by {server.host} for user {server.username}: {exc}"
            ) from exc

        ftp.set_pasv(True)
        logger.info("Connected to %s:%d as %s", server.host, server.port, server.username)
        return ftp

    async def close(self) -> None:
        """QUIT and close the connection. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._ftp is not None:
            await asyncio.to_thread(self._disconnect, self._ftp)
            self._ftp = None

    @staticmethod
    def _disconnect(ftp: ftplib.FTP) -> None:
        """Quit, falling back to a hard close (sync, called via to_thread)."""
        try:
            ftp.quit()
        except ftplib.all_errors:
            logger.debug("Error during FTP QUIT, closing socket", exc_info=True)
            ftp.close()

    # --- Operations ---

    async def change_directory(self, path: str) -> None:
        """Change the working directory.

        Raises:
            NotFoundError: If the server rejects the path (5xx).
            TransferError: On any other protocol or socket failure.
        """

        def _cwd() -> None:
            try:
                self.ftp.cwd(path)
            except ftplib.error_perm as exc:
                raise NotFoundError(f"Remote path not found: {path} ({exc})") from exc
            except ftplib.all_errors as exc:
                raise TransferError(f"Could not change to {path}: {exc}") from exc

        await asyncio.to_thread(_cwd)

    def iter_entries(self) -> Iterator[RemoteEntry]:
        """Yield entries of the current directory (sync). Does not recurse.

        Prefers MLSD; falls back to parsing LIST output when the server
        does not support it.
        """
        try:
            yield from _parse_mlsd(self.ftp)
            return
        except ftplib.error_perm as exc:
            if not str(exc).startswith(("500", "501", "502", "504")):
                raise TransferError(f"Listing failed: {exc}") from exc
            logger.debug("MLSD unsupported by %s, falling back to LIST", self._server.host)
        except ftplib.all_errors as exc:
            raise TransferError(f"Listing failed: {exc}") from exc

        try:
            yield from _parse_list(self.ftp)
        except ftplib.all_errors as exc:
            raise TransferError(f"Listing failed: {exc}") from exc

    async def list(self) -> list[RemoteEntry]:
        """List the current directory.

        Raises:
            TransferError: If the listing fails mid-flight.
        """
        return await asyncio.to_thread(lambda: list(self.iter_entries()))

    async def fetch(self, name: str) -> bytes:
        """Download one file from the current directory, buffered in memory.

        Raises:
            TransferError: On any I/O fault mid-transfer.
        """

        def _retr() -> bytes:
            buf = io.BytesIO()
            try:
                self.ftp.retrbinary(f"RETR {name}", buf.write)
            except ftplib.all_errors as exc:
                raise TransferError(f"Failed to fetch {name}: {exc}") from exc
            return buf.getvalue()

        return await asyncio.to_thread(_retr)
