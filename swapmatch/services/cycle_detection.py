# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Bounded cycle detection over the active targeting graph."""

from collections import deque
from typing import Protocol


class ActiveEdgeReader(Protocol):
    """Read port listing the targets of a listing's active outgoing edges."""

    async def active_targets_of(self, listing_id: int) -> list[int]:
        """Get target listing IDs of active edges leaving listing_id."""
        ...


async def find_cycle_path(
    reader: ActiveEdgeReader,
    source_id: int,
    target_id: int,
    max_depth: int = 10,
) -> list[int] | None:
    """Look for an active path from target back to source.

    Adding source -> target closes a loop exactly when such a path exists.
    The breadth-first walk stops after max_depth hops, so it terminates on
    any graph but may miss longer loops.

    Args:
        reader: Graph read port.
        source_id: Proposed edge source.
        target_id: Proposed edge target.
        max_depth: Maximum number of hops to follow from the target.

    Returns:
        Listing IDs from target to source if a loop would form, else None.
    """
    if source_id == target_id:
        return [source_id]

    visited = {target_id}
    queue: deque[tuple[int, list[int]]] = deque([(target_id, [target_id])])

    while queue:
        node, path = queue.popleft()
        if len(path) > max_depth:
            continue
        for next_id in await reader.active_targets_of(node):
            if next_id == source_id:
                return [*path, next_id]
            if next_id not in visited:
                visited.add(next_id)
                queue.append((next_id, [*path, next_id]))

    return None
