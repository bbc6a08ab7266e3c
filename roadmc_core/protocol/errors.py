"""RoadMC Errors - Memcached Error Taxonomy.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.

Hierarchy:
    MemcachedError
    ├── ProtocolError            malformed or empty response line
    ├── ClientError              request rejected as malformed (caller bug)
    │   ├── UnsupportedCommandError
    │   ├── IllegalKeyError
    │   └── IllegalValueError
    ├── ServerError              server-side failure, connection still healthy
    ├── TransportError           connect/read/write/timeout failure
    │   ├── NodeConnectError
    │   ├── SocketTimeoutError
    │   ├── ConnectionLostError
    │   ├── PoolTimeoutError
    │   ├── PoolClosedError
    │   └── NodeUnavailableError
    │       └── NoAvailableNodeError
    └── FlushError               per-node failures of flush_all
"""

from __future__ import annotations

from typing import Dict, Optional


class MemcachedError(Exception):
    """Base class for every error raised by RoadMC.

    Attributes:
        retryable: Whether the operation may be repeated on another node
    """

    retryable = False

    def __init__(self, message: str = "", node: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.node = node

    def __str__(self) -> str:
        if self.node:
            return f"{self.message} (node {self.node})"
        return self.message


class ProtocolError(MemcachedError):
    """The server sent something the protocol does not allow here."""


class ClientError(MemcachedError):
    """The server (or the client, before sending) rejected the request."""


class UnsupportedCommandError(ClientError):
    """The server answered a bare ERROR."""

    def __init__(self, message: str = "", node: Optional[str] = None):
        super().__init__(
            message
            or "Operation is not supported by the server or the request was malformed.",
            node,
        )


class IllegalKeyError(ClientError):
    """Key is empty, too long or contains whitespace/control characters."""


class IllegalValueError(ClientError):
    """Value cannot be sent (bad flags, non-bytes payload)."""


class ServerError(MemcachedError):
    """SERVER_ERROR reply. The connection that carried it is still usable."""

    retryable = True


class TransportError(MemcachedError):
    """Network level failure talking to a node.

    Attributes:
        retryable: Whether the operation may be repeated elsewhere
        fatal: Whether the node should be declared dead immediately
    """

    retryable = True
    fatal = False


class NodeConnectError(TransportError):
    """Could not open a connection to the node."""

    fatal = True


class SocketTimeoutError(TransportError):
    """Read or write did not complete within the operation timeout."""


class ConnectionLostError(TransportError):
    """Peer closed or reset the connection."""


class PoolTimeoutError(TransportError):
    """No connection slot became free within the pool timeout."""


class PoolClosedError(TransportError):
    """The pool was closed (node removed or client shut down)."""

    retryable = False


class NodeUnavailableError(TransportError):
    """The node owning the key is dead and not yet due for a probe."""


class NoAvailableNodeError(NodeUnavailableError):
    """Every node in the cluster is dead."""

    retryable = False

    def __init__(self, message: str = "", node: Optional[str] = None):
        super().__init__(message or "No available node", node)


class FlushError(MemcachedError):
    """flush_all failed on one or more nodes.

    Attributes:
        failures: Node address -> error raised by that node
    """

    def __init__(self, failures: Dict[str, Exception]):
        nodes = ", ".join(sorted(failures))
        super().__init__(f"flush_all failed on {len(failures)} node(s): {nodes}")
        self.failures = dict(failures)


__all__ = [
    "MemcachedError",
    "ProtocolError",
    "ClientError",
    "UnsupportedCommandError",
    "IllegalKeyError",
    "IllegalValueError",
    "ServerError",
    "TransportError",
    "NodeConnectError",
    "SocketTimeoutError",
    "ConnectionLostError",
    "PoolTimeoutError",
    "PoolClosedError",
    "NodeUnavailableError",
    "NoAvailableNodeError",
    "FlushError",
]
