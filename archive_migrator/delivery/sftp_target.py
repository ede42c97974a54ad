from __future__ import annotations

import io
import logging
import posixpath
import queue
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Protocol

import paramiko

from archive_migrator.delivery.base import ObjectSource

logger = logging.getLogger("archive_migrator")


@dataclass(frozen=True, slots=True)
class SftpConfig:
    host: str
    username: str
    port: int = 22
    password: str | None = None
    private_key_path: str | None = None
    known_hosts_path: str | None = None
    timeout_seconds: float = 30.0
    pool_size: int = 10


class SftpSession(Protocol):
    @property
    def sftp(self) -> Any: ...

    def close(self) -> None: ...


@dataclass(slots=True)
class ParamikoSession:
    ssh: paramiko.SSHClient
    sftp: paramiko.SFTPClient

    def close(self) -> None:
        try:
            self.sftp.close()
        finally:
            self.ssh.close()


def open_paramiko_session(config: SftpConfig) -> ParamikoSession:
    client = paramiko.SSHClient()
    if config.known_hosts_path:
        client.load_host_keys(config.known_hosts_path)
        client.set_missing_host_key_policy(paramiko.RejectPolicy())
    else:
        logger.warning(
            f"No known_hosts configured for {config.host}; accepting unknown host keys",
            extra={"stage": "uploading"},
        )
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    client.connect(
        hostname=config.host,
        port=config.port,
        username=config.username,
        password=config.password or None,
        key_filename=config.private_key_path or None,
        timeout=config.timeout_seconds,
        allow_agent=False,
        look_for_keys=False,
    )
    try:
        sftp = client.open_sftp()
    except BaseException:
        client.close()
        raise
    return ParamikoSession(ssh=client, sftp=sftp)


class SftpSessionPool:
    """Bounded cache of SFTP sessions shared by concurrent pipelines.

    At most ``max_size`` sessions exist at once; callers beyond that block
    until a session is returned. A session whose operation raised is closed
    instead of being returned to the pool.
    """

    def __init__(self, *, connect: Callable[[], SftpSession], max_size: int) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._connect = connect
        self._idle: queue.LifoQueue[SftpSession] = queue.LifoQueue()
        self._slots = threading.BoundedSemaphore(max_size)
        self.max_size = max_size

    @contextmanager
    def session(self) -> Iterator[SftpSession]:
        self._slots.acquire()
        try:
            try:
                current = self._idle.get_nowait()
            except queue.Empty:
                current = self._connect()
            try:
                yield current
            except BaseException:
                _close_quietly(current)
                raise
            self._idle.put(current)
        finally:
            self._slots.release()

    def close(self) -> None:
        while True:
            try:
                current = self._idle.get_nowait()
            except queue.Empty:
                return
            _close_quietly(current)


class SftpTarget:
    def __init__(
        self,
        config: SftpConfig | None = None,
        *,
        pool: SftpSessionPool | None = None,
    ) -> None:
        if pool is None:
            if config is None:
                raise ValueError("Either config or pool is required")
            pool = SftpSessionPool(
                connect=lambda: open_paramiko_session(config),
                max_size=config.pool_size,
            )
        self.pool = pool

    def ensure_directory(self, path: str) -> None:
        with self.pool.session() as current:
            for directory in _directory_chain(path):
                _mkdir_if_missing(current.sftp, directory)

    def write_object(self, path: str, source: ObjectSource) -> None:
        stream = (
            io.BytesIO(source) if isinstance(source, (bytes, bytearray)) else source
        )
        with self.pool.session() as current:
            current.sftp.putfo(stream, path, confirm=True)

    def close(self) -> None:
        self.pool.close()


def _directory_chain(path: str) -> list[str]:
    normalized = posixpath.normpath(path)
    if normalized in {"/", "."}:
        return []
    chain: list[str] = []
    prefix = "/" if normalized.startswith("/") else ""
    for part in normalized.strip("/").split("/"):
        prefix = posixpath.join(prefix, part) if prefix else part
        chain.append(prefix)
    return chain


def _mkdir_if_missing(sftp: Any, directory: str) -> None:
    try:
        sftp.stat(directory)
        return
    except FileNotFoundError:
        pass
    try:
        sftp.mkdir(directory)
    except OSError:
        # another worker may have created it in between
        sftp.stat(directory)


def _close_quietly(current: SftpSession) -> None:
    try:
        current.close()
    except Exception as error:  # noqa: BLE001
        logger.warning(f"Failed to close SFTP session: {error}")
