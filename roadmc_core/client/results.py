"""RoadMC Results - Operation Results and Server Statistics.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Generic, Iterator, List, Optional, Tuple, TypeVar

from roadmc_core.protocol.commands import ResultStatus

T = TypeVar("T")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Outcome of one client operation.

    Expected negative outcomes (key absent, CAS mismatch, not stored)
    are results with success=False, never exceptions.

    Attributes:
        success: Whether the operation did what was asked
        status: Protocol-level outcome
        value: Returned value, if any
        cas: CAS token, 0 if unknown
        node: Address of the node that served the request
        message: Extra detail for failures
    """

    success: bool
    status: ResultStatus
    value: Optional[T] = None
    cas: int = 0
    node: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def ok(
        cls,
        status: ResultStatus,
        value: Optional[T] = None,
        cas: int = 0,
        node: Optional[str] = None,
    ) -> "OperationResult[T]":
        return cls(success=True, status=status, value=value, cas=cas, node=node)

    @classmethod
    def fail(
        cls,
        status: ResultStatus,
        message: Optional[str] = None,
        node: Optional[str] = None,
        cas: int = 0,
    ) -> "OperationResult[T]":
        return cls(success=False, status=status, message=message, node=node, cas=cas)

    def __bool__(self) -> bool:
        return self.success


class ServerStats:
    """Stats of every node, as returned by the stats command.

    Example:
        stats = client.stats()
        stats.get("cache-1.local:11211", "curr_items")
        stats.aggregate("curr_items")
    """

    def __init__(self, results: Dict[str, Dict[str, str]]):
        """Initialize stats.

        Args:
            results: Node address -> stat name -> raw value
        """
        self._results = results

    @property
    def nodes(self) -> List[str]:
        return list(self._results)

    def for_node(self, address: str) -> Dict[str, str]:
        """All stats of one node (empty if the node did not answer)."""
        return dict(self._results.get(address, {}))

    def get(self, address: str, name: str) -> Optional[str]:
        return self._results.get(address, {}).get(name)

    def get_int(self, address: str, name: str) -> Optional[int]:
        value = self.get(address, name)
        try:
            return int(value) if value is not None else None
        except ValueError:
            return None

    def aggregate(self, name: str) -> int:
        """Sum an integer stat over every node.

        Args:
            name: Stat name, e.g. curr_items

        Returns:
            Sum, skipping nodes without a numeric value
        """
        total = 0
        for address in self._results:
            value = self.get_int(address, name)
            if value is not None:
                total += value
        return total

    def items(self) -> Iterator[Tuple[str, Dict[str, str]]]:
        for address, stats in self._results.items():
            yield address, dict(stats)

    def __contains__(self, address: str) -> bool:
        return address in self._results

    def __len__(self) -> int:
        return len(self._results)

    def __repr__(self) -> str:
        return f"ServerStats(nodes={self.nodes})"


__all__ = ["OperationResult", "ServerStats"]
