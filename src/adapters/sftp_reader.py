"""SFTP log reader adapter.

Opens one paramiko session per call inside a worker thread, reads the whole
file and slices it by line offset. Endpoint shape::

    {
        "type": "sftp",
        "host": "...", "port": 22, "username": "...",
        "password_env": "DEADWATCH_SFTP_PASSWORD_MAIN",
        "log_path": "./host_1234/Logs/Deadside.log",
        "deathlog_dir": "./host_1234/actual1/deathlogs",
    }
"""

from __future__ import annotations

import asyncio
import errno
import os
import posixpath
import socket
import stat
from contextlib import contextmanager
from typing import Iterator, List, Sequence, Tuple

import paramiko

from adapters.local_reader import DEATH_LOG_SUFFIX, lines_since
from core.cursors import sort_death_log_files
from core.errors import RemoteConnectionError, SourceNotFound
from core.models import ServerSource

CONNECT_TIMEOUT = 30
# Blocking reads on an open channel raise socket.timeout after this many seconds.
CHANNEL_TIMEOUT = 30


def _is_missing(exc: OSError) -> bool:
    return isinstance(exc, FileNotFoundError) or getattr(exc, "errno", None) == errno.ENOENT


class SftpLogReader:
    """LogReaderPort backed by an SFTP server."""

    @contextmanager
    def _session(self, server: ServerSource) -> Iterator[paramiko.SFTPClient]:
        endpoint = server.endpoint
        host = endpoint.get("host")
        if not host:
            raise SourceNotFound(f"Server {server.server_id} has no SFTP host configured")
        password_env = endpoint.get("password_env")
        password = os.getenv(password_env) if password_env else endpoint.get("password")

        transport = None
        try:
            sock = socket.create_connection((host, int(endpoint.get("port", 22))), timeout=CONNECT_TIMEOUT)
            transport = paramiko.Transport(sock)
            transport.banner_timeout = CONNECT_TIMEOUT
            transport.auth_timeout = CONNECT_TIMEOUT
            transport.connect(username=endpoint.get("username"), password=password)
            client = paramiko.SFTPClient.from_transport(transport)
            client.get_channel().settimeout(CHANNEL_TIMEOUT)
        except (paramiko.SSHException, OSError) as exc:
            if transport is not None:
                transport.close()
            raise RemoteConnectionError(f"SFTP connection to {host} failed: {exc}") from exc

        try:
            yield client
        finally:
            client.close()
            transport.close()

    def _read_text(self, server: ServerSource, path: str) -> str:
        with self._session(server) as client:
            try:
                with client.open(path, "rb") as handle:
                    data = handle.read()
            except socket.timeout as exc:
                raise RemoteConnectionError(f"Timed out reading {path}") from exc
            except OSError as exc:
                if _is_missing(exc):
                    raise SourceNotFound(f"No such file: {path}") from exc
                raise RemoteConnectionError(f"Could not read {path}: {exc}") from exc
            except paramiko.SSHException as exc:
                raise RemoteConnectionError(f"Could not read {path}: {exc}") from exc
        return data.decode("utf-8", errors="replace")

    def _walk_csv(self, client: paramiko.SFTPClient, base: str, relative: str, found: List[str]) -> None:
        current = posixpath.join(base, relative) if relative else base
        for entry in client.listdir_attr(current):
            name = entry.filename
            if name in (".", ".."):
                continue
            child = posixpath.join(relative, name) if relative else name
            if entry.st_mode is not None and stat.S_ISDIR(entry.st_mode):
                self._walk_csv(client, base, child, found)
            elif name.lower().endswith(DEATH_LOG_SUFFIX):
                found.append(child)

    def _list_csv(self, server: ServerSource, directory: str) -> List[str]:
        found: List[str] = []
        with self._session(server) as client:
            try:
                self._walk_csv(client, directory, "", found)
            except socket.timeout as exc:
                raise RemoteConnectionError(f"Timed out listing {directory}") from exc
            except OSError as exc:
                if _is_missing(exc):
                    raise SourceNotFound(f"No such directory: {directory}") from exc
                raise RemoteConnectionError(f"Could not list {directory}: {exc}") from exc
            except paramiko.SSHException as exc:
                raise RemoteConnectionError(f"Could not list {directory}: {exc}") from exc
        return sort_death_log_files(found)

    def _path(self, server: ServerSource, key: str) -> str:
        path = server.endpoint.get(key)
        if not path:
            raise SourceNotFound(f"Server {server.server_id} has no {key} configured")
        return str(path)

    async def read_lines_since(self, server: ServerSource, offset: int) -> Tuple[List[str], int]:
        content = await asyncio.to_thread(self._read_text, server, self._path(server, "log_path"))
        return lines_since(content, offset)

    async def list_death_log_files(self, server: ServerSource) -> Sequence[str]:
        return await asyncio.to_thread(self._list_csv, server, self._path(server, "deathlog_dir"))

    async def read_file_content(self, server: ServerSource, filename: str) -> str:
        path = posixpath.join(self._path(server, "deathlog_dir"), filename)
        return await asyncio.to_thread(self._read_text, server, path)
