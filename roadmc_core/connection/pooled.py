"""RoadMC Pooled Connection - One TCP Connection to One Server.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import socket
import time
from typing import Optional

from roadmc_core.protocol.errors import (
    ConnectionLostError,
    NodeConnectError,
    SocketTimeoutError,
    TransportError,
)

logger = logging.getLogger(__name__)

RECV_SIZE = 4096


class PooledConnection:
    """A socket owned by a ConnectionPool slot.

    Buffers reads so the codec can ask for a line or an exact number of
    bytes. All socket failures are raised as TransportError subclasses.

    Example:
        conn = PooledConnection.connect("cache-1.local", 11211, slot=0)
        conn.write(b"version\\r\\n")
        line = conn.read_until(b"\\n")
    """

    def __init__(self, sock: socket.socket, address: str, slot: int = 0):
        """Initialize connection.

        Args:
            sock: Connected socket
            address: host:port of the peer
            slot: Index of the pool slot holding this connection
        """
        self._sock = sock
        self.address = address
        self.slot = slot
        self.busy = False

        self._buffer = bytearray()
        self._closed = False

        self.created_at = time.monotonic()
        self.last_activity = self.created_at

    @classmethod
    def connect(
        cls,
        host: str,
        port: int,
        slot: int = 0,
        connect_timeout: Optional[float] = 2.0,
        operation_timeout: Optional[float] = 2.0,
    ) -> "PooledConnection":
        """Open a new connection.

        Args:
            host: Server host
            port: Server port
            slot: Pool slot index
            connect_timeout: Seconds allowed for the TCP handshake
            operation_timeout: Seconds allowed per read/write

        Returns:
            Connected PooledConnection

        Raises:
            NodeConnectError: If the server cannot be reached
        """
        address = f"{host}:{port}"
        try:
            sock = socket.create_connection((host, port), timeout=connect_timeout)
        except OSError as e:
            raise NodeConnectError(f"Could not connect: {e}", address) from e

        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.settimeout(operation_timeout)
        logger.debug(f"Opened connection to {address} in slot {slot}")
        return cls(sock, address, slot)

    @property
    def is_alive(self) -> bool:
        """Check if connection is open."""
        return not self._closed

    @property
    def has_pending_data(self) -> bool:
        """Bytes were received that no one read; the stream is out of sync."""
        return bool(self._buffer)

    @property
    def idle_seconds(self) -> float:
        """Get time since last read or write."""
        return time.monotonic() - self.last_activity

    def write(self, data: bytes) -> None:
        """Send the whole buffer."""
        self._ensure_open()
        try:
            self._sock.sendall(data)
        except socket.timeout as e:
            raise SocketTimeoutError("Write timed out", self.address) from e
        except OSError as e:
            raise ConnectionLostError(f"Write failed: {e}", self.address) from e
        self.last_activity = time.monotonic()

    def read_until(self, delimiter: bytes) -> bytes:
        """Read up to and including the first delimiter."""
        start = 0
        while True:
            idx = self._buffer.find(delimiter, start)
            if idx != -1:
                end = idx + len(delimiter)
                data = bytes(self._buffer[:end])
                del self._buffer[:end]
                return data
            start = max(len(self._buffer) - len(delimiter) + 1, 0)
            self._fill()

    def read_exact(self, size: int) -> bytes:
        """Read exactly size bytes."""
        while len(self._buffer) < size:
            self._fill()
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    def _fill(self) -> None:
        self._ensure_open()
        try:
            chunk = self._sock.recv(RECV_SIZE)
        except socket.timeout as e:
            raise SocketTimeoutError("Read timed out", self.address) from e
        except OSError as e:
            raise ConnectionLostError(f"Read failed: {e}", self.address) from e

        if not chunk:
            raise ConnectionLostError("Connection closed by server", self.address)

        self._buffer.extend(chunk)
        self.last_activity = time.monotonic()

    def _ensure_open(self) -> None:
        if self._closed:
            raise TransportError("Connection already closed", self.address)

    def close(self) -> None:
        """Close the socket. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self._buffer.clear()
        try:
            self._sock.close()
        except OSError as e:
            logger.debug(f"Error closing connection to {self.address}: {e}")

    def __repr__(self) -> str:
        state = "open" if self.is_alive else "closed"
        return f"PooledConnection(address={self.address}, slot={self.slot}, {state})"


__all__ = ["PooledConnection", "RECV_SIZE"]
