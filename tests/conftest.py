"""Shared fixtures for SADIS tests."""

import asyncio

import pytest

from sadis.errors import NotFoundError, TransferError
from sadis.schemas.ingest import AppConfig, EntryKind, RemoteEntry, ServerDescriptor


class FakeFtpServer:
    """In-memory FTP server state shared by every FakeSession it creates.

    ``listings`` maps remote path -> entries; ``files`` maps file name -> bytes.
    ``connect_errors`` is consumed one per connect attempt (None = succeed).
    """

    def __init__(self) -> None:
        self.listings: dict[str, list[RemoteEntry]] = {}
        self.files: dict[str, bytes] = {}
        self.connect_errors: list[Exception | None] = []
        self.fetch_errors: dict[str, Exception] = {}
        self.list_error: Exception | None = None
        self.delay = 0.0
        self.sessions: list["FakeSession"] = []
        self.active = 0
        self.max_active = 0

    def add_file(self, path: str, name: str, data: bytes) -> None:
        self.listings.setdefault(path, []).append(
            RemoteEntry(name=name, kind=EntryKind.FILE, size=len(data))
        )
        self.files[name] = data

    def add_entry(self, path: str, name: str, kind: EntryKind) -> None:
        self.listings.setdefault(path, []).append(RemoteEntry(name=name, kind=kind))

    def factory(self, server: ServerDescriptor, **kwargs) -> "FakeSession":
        session = FakeSession(self, server)
        self.sessions.append(session)
        return session


class FakeSession:
    """Stand-in for RemoteSession backed by a FakeFtpServer."""

    def __init__(self, remote: FakeFtpServer, server: ServerDescriptor) -> None:
        self.remote = remote
        self.server = server
        self.cwd: str | None = None
        self.connected = False
        self.close_count = 0
        self.fetched: list[str] = []

    async def connect(self) -> None:
        self.remote.active += 1
        self.remote.max_active = max(self.remote.max_active, self.remote.active)
        error = self.remote.connect_errors.pop(0) if self.remote.connect_errors else None
        if self.remote.delay:
            await asyncio.sleep(self.remote.delay)
        if error is not None:
            raise error
        self.connected = True

    async def change_directory(self, path: str) -> None:
        if path not in self.remote.listings:
            raise NotFoundError(f"Remote path not found: {path}")
        self.cwd = path

    async def list(self) -> list[RemoteEntry]:
        if self.remote.list_error is not None:
            raise self.remote.list_error
        return list(self.remote.listings[self.cwd])

    async def fetch(self, name: str) -> bytes:
        self.fetched.append(name)
        if name in self.remote.fetch_errors:
            raise self.remote.fetch_errors[name]
        if name not in self.remote.files:
            raise TransferError(f"Failed to fetch {name}: 550 not found")
        return self.remote.files[name]

    async def close(self) -> None:
        self.close_count += 1
        self.remote.active -= 1


@pytest.fixture()
def fake_ftp():
    return FakeFtpServer()


@pytest.fixture()
def server(tmp_path):
    return ServerDescriptor(
        host="ftp.example.com",
        port=21,
        username="sadis",
        password="secret",
        local_path=str(tmp_path / "mirror"),
    )


@pytest.fixture()
def make_config(server):
    """Build an AppConfig from (name, remote_path, interval) tuples."""

    def _make(*folders: tuple[str, str, int]) -> AppConfig:
        return AppConfig(
            server=server,
            folders=[
                {"id": f"f{i}", "name": name, "remote_path": path, "interval": interval}
                for i, (name, path, interval) in enumerate(folders)
            ],
        )

    return _make
