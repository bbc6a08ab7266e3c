"""Pytest configuration and fixtures.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.

Provides an in-process memcached server speaking the text protocol, a
scripted socket for codec tests, and client fixtures wired to them.
"""

import socket
import socketserver
import threading
from collections import deque
from contextlib import closing
from typing import Deque, Dict, List, Optional, Tuple

import pytest

from roadmc_core.client.client import MemcachedClient
from roadmc_core.client.config import ClientConfig
from roadmc_core.connection.pooled import PooledConnection

MAX_COUNTER = 2 ** 64


def find_free_port() -> int:
    """Find an available port for testing."""
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(("127.0.0.1", 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


# ============================================================================
# Fake memcached server
# ============================================================================

class _Handler(socketserver.StreamRequestHandler):
    def handle(self):
        fake: "FakeMemcachedServer" = self.server.fake
        fake._track(self.request)
        try:
            while True:
                line = self.rfile.readline()
                if not line:
                    return
                reply = fake.dispatch(line.rstrip(b"\r\n"), self.rfile)
                if reply is None:
                    return
                self.wfile.write(reply)
                self.wfile.flush()
        except (OSError, ValueError):
            return
        finally:
            fake._untrack(self.request)


class _TCPServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True


class FakeMemcachedServer:
    """Threaded memcached stand-in.

    Implements get/gets/set/add/replace/append/prepend/cas/incr/decr/
    delete/flush_all/stats/version with real CAS tokens. Expirations are
    accepted but not enforced.

    Example:
        server = FakeMemcachedServer().start()
        server.inject(b"SERVER_ERROR out of memory")   # next reply
        server.stop()                                   # refuses connects
    """

    def __init__(self, port: Optional[int] = None):
        self.host = "127.0.0.1"
        self.port = port or find_free_port()
        self.items: Dict[bytes, List] = {}
        self.commands: List[bytes] = []
        self.connections_opened = 0
        self._next_cas = 0
        self._injected: Deque[bytes] = deque()
        self._lock = threading.Lock()
        self._clients: set = set()
        self._server: Optional[_TCPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def running(self) -> bool:
        return self._server is not None

    def start(self) -> "FakeMemcachedServer":
        self._server = _TCPServer((self.host, self.port), _Handler)
        self._server.fake = self
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        return self

    def stop(self) -> None:
        """Stop listening and drop every open connection."""
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        self._server = None
        with self._lock:
            clients = list(self._clients)
            self._clients.clear()
        for sock in clients:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            sock.close()

    def inject(self, reply: bytes) -> None:
        """Answer the next command with this raw line instead."""
        self._injected.append(reply)

    def _track(self, sock) -> None:
        with self._lock:
            self._clients.add(sock)
            self.connections_opened += 1

    def _untrack(self, sock) -> None:
        with self._lock:
            self._clients.discard(sock)

    def _cas(self) -> int:
        self._next_cas += 1
        return self._next_cas

    def dispatch(self, line: bytes, rfile) -> Optional[bytes]:
        parts = line.split()
        if not parts:
            return b"ERROR\r\n"
        verb = parts[0].decode("ascii", errors="replace")

        payload = None
        if verb in ("set", "add", "replace", "append", "prepend", "cas"):
            if len(parts) < 5:
                return b"CLIENT_ERROR bad command line format\r\n"
            payload = rfile.read(int(parts[4]) + 2)
            if payload[-2:] != b"\r\n":
                return b"CLIENT_ERROR bad data chunk\r\n"
            payload = payload[:-2]

        with self._lock:
            self.commands.append(line)
            if self._injected:
                return self._injected.popleft() + b"\r\n"

            handler = getattr(self, f"_cmd_{verb}", None)
            if handler is None:
                return b"ERROR\r\n"
            return handler(parts, payload)

    def _cmd_get(self, parts, payload, with_cas=False) -> bytes:
        out = []
        for key in parts[1:]:
            if key in self.items:
                flags, data, cas = self.items[key]
                header = b"VALUE %s %d %d" % (key, flags, len(data))
                if with_cas:
                    header += b" %d" % cas
                out.append(header + b"\r\n" + data + b"\r\n")
        out.append(b"END\r\n")
        return b"".join(out)

    def _cmd_gets(self, parts, payload) -> bytes:
        return self._cmd_get(parts, payload, with_cas=True)

    def _store(self, key: bytes, flags: int, data: bytes) -> bytes:
        self.items[key] = [flags, data, self._cas()]
        return b"STORED\r\n"

    def _cmd_set(self, parts, payload) -> bytes:
        return self._store(parts[1], int(parts[2]), payload)

    def _cmd_add(self, parts, payload) -> bytes:
        if parts[1] in self.items:
            return b"NOT_STORED\r\n"
        return self._store(parts[1], int(parts[2]), payload)

    def _cmd_replace(self, parts, payload) -> bytes:
        if parts[1] not in self.items:
            return b"NOT_STORED\r\n"
        return self._store(parts[1], int(parts[2]), payload)

    def _cmd_append(self, parts, payload) -> bytes:
        if parts[1] not in self.items:
            return b"NOT_STORED\r\n"
        flags, data, _ = self.items[parts[1]]
        return self._store(parts[1], flags, data + payload)

    def _cmd_prepend(self, parts, payload) -> bytes:
        if parts[1] not in self.items:
            return b"NOT_STORED\r\n"
        flags, data, _ = self.items[parts[1]]
        return self._store(parts[1], flags, payload + data)

    def _cmd_cas(self, parts, payload) -> bytes:
        key = parts[1]
        if key not in self.items:
            return b"NOT_FOUND\r\n"
        if self.items[key][2] != int(parts[5]):
            return b"EXISTS\r\n"
        return self._store(key, int(parts[2]), payload)

    def _mutate(self, parts, sign: int) -> bytes:
        key = parts[1]
        if key not in self.items:
            return b"NOT_FOUND\r\n"
        flags, data, _ = self.items[key]
        if not data.isdigit():
            return b"CLIENT_ERROR cannot increment or decrement non-numeric value\r\n"
        value = int(data) + sign * int(parts[2])
        value = max(value, 0) % MAX_COUNTER
        self._store(key, flags, str(value).encode("ascii"))
        return b"%d\r\n" % value

    def _cmd_incr(self, parts, payload) -> bytes:
        return self._mutate(parts, 1)

    def _cmd_decr(self, parts, payload) -> bytes:
        return self._mutate(parts, -1)

    def _cmd_delete(self, parts, payload) -> bytes:
        if self.items.pop(parts[1], None) is None:
            return b"NOT_FOUND\r\n"
        return b"DELETED\r\n"

    def _cmd_flush_all(self, parts, payload) -> bytes:
        self.items.clear()
        return b"OK\r\n"

    def _cmd_stats(self, parts, payload) -> bytes:
        stats = [
            ("pid", "4242"),
            ("version", "1.6.21"),
            ("curr_items", str(len(self.items))),
            ("curr_connections", str(len(self._clients))),
        ]
        lines = [b"STAT %s %s\r\n" % (k.encode(), v.encode()) for k, v in stats]
        return b"".join(lines) + b"END\r\n"

    def _cmd_version(self, parts, payload) -> bytes:
        return b"VERSION 1.6.21\r\n"


# ============================================================================
# Scripted socket
# ============================================================================

class MockSocket:
    """Socket double returning scripted recv chunks.

    Example:
        sock = MockSocket([b"VALUE k 0 1\\r\\n", b"x\\r\\nEND\\r\\n"])
        conn = PooledConnection(sock, "mock:11211")
    """

    def __init__(self, chunks: List[bytes]):
        self.chunks: Deque = deque(chunks)
        self.sent: List[bytes] = []
        self.closed = False

    def sendall(self, data: bytes) -> None:
        self.sent.append(bytes(data))

    def recv(self, size: int) -> bytes:
        if not self.chunks:
            return b""
        chunk = self.chunks.popleft()
        if isinstance(chunk, BaseException):
            raise chunk
        return chunk

    def close(self) -> None:
        self.closed = True


def mock_connection(*chunks) -> Tuple[PooledConnection, MockSocket]:
    sock = MockSocket(list(chunks))
    return PooledConnection(sock, "mock:11211"), sock


def client_config(servers, **overrides) -> ClientConfig:
    """Config with short timeouts and no background maintenance."""
    values = dict(
        servers=tuple(s.address for s in servers),
        connect_timeout=1.0,
        operation_timeout=1.0,
        pool_timeout=1.0,
        max_pool_size=4,
        maintenance_interval=0,
    )
    values.update(overrides)
    return ClientConfig(**values)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def memcached():
    """One running fake server."""
    server = FakeMemcachedServer().start()
    yield server
    server.stop()


@pytest.fixture
def memcached_trio():
    """Three running fake servers."""
    servers = [FakeMemcachedServer().start() for _ in range(3)]
    yield servers
    for server in servers:
        server.stop()


@pytest.fixture
def client(memcached):
    """Client for the single fake server."""
    c = MemcachedClient(client_config([memcached]))
    yield c
    c.close()


@pytest.fixture
def cluster_client(memcached_trio):
    """Client for three servers; one failure declares a node dead."""
    c = MemcachedClient(
        client_config(memcached_trio, failure_threshold=1, dead_timeout=60.0)
    )
    yield c
    c.close()
