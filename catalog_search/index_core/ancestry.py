"""Ancestry resolution over the parent-link graph.

Each item is resolved into the chain of names from its owning volume
(exclusive) down to itself. The walk is iterative with an explicit stack,
bounded by ``max_depth`` and tolerant of cycles and dangling parent ids.
Results are memoized per node unless they were cut short by a cycle edge:
those depend on where the walk started and are recomputed per walk.

When an item has several parent links, the best branch is chosen by:
1. a branch that reaches a volume beats one that does not,
2. then the deeper branch wins,
3. then the lowest parent id (parents are visited in ascending order).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Set, Tuple

DEFAULT_MAX_DEPTH = 100


@dataclass(frozen=True)
class Ancestry:
    """Resolved chain for one node.

    ``segments`` are root-to-leaf names below the volume, ``depth`` is the
    number of parent steps taken, ``volume_id`` is None when no volume was
    reached (root marker, dangling id, cycle, or depth bound).
    """

    segments: Tuple[str, ...]
    volume_id: Optional[int]
    depth: int

    @property
    def rank(self) -> Tuple[bool, int]:
        return (self.volume_id is not None, self.depth)

    @property
    def full_path(self) -> Optional[str]:
        if not self.segments:
            return None
        return "/".join(self.segments)


_VOLUME_ANCHOR_DEPTH = 0


class AncestryResolver:
    """Resolve full paths and owning volumes for items of one source snapshot.

    Args:
        parents: item id -> parent ids (root markers already removed)
        names: item id -> display name, for every item that exists
        is_volume: predicate telling whether an item id is a volume
        max_depth: bound on parent steps per walk
    """

    def __init__(
        self,
        parents: Mapping[int, Tuple[int, ...]],
        names: Mapping[int, str],
        is_volume: Callable[[int], bool],
        max_depth: int = DEFAULT_MAX_DEPTH,
    ):
        self._parents = parents
        self._names = names
        self._is_volume = is_volume
        self._max_depth = max(1, int(max_depth))
        self._memo: Dict[int, Ancestry] = {}

    def resolve(self, item_id: int) -> Ancestry:
        """Ancestry of ``item_id`` as an index entry.

        A volume entry is its own owning volume and has no path below it.
        """
        if self._is_volume(item_id):
            return Ancestry((), item_id, _VOLUME_ANCHOR_DEPTH)
        return self._chain(item_id)

    def _chain(self, start: int) -> Ancestry:
        memo = self._memo
        if start in memo:
            return memo[start]

        # results that went through a cycle edge only hold for this walk
        provisional: Dict[int, Ancestry] = {}
        stack: List[int] = [start]
        open_nodes: Set[int] = set()
        while stack:
            node = stack[-1]
            if node in memo or node in provisional:
                stack.pop()
                continue
            if node not in open_nodes:
                open_nodes.add(node)
                pending = [
                    p
                    for p in self._parents.get(node, ())
                    if p in self._names
                    and not self._is_volume(p)
                    and p not in memo
                    and p not in provisional
                    and p not in open_nodes
                ]
                if pending:
                    # reversed so the lowest id is resolved first
                    stack.extend(reversed(pending))
                    continue
            result, exact = self._best(node, open_nodes, provisional)
            if exact:
                memo[node] = result
            else:
                provisional[node] = result
            open_nodes.discard(node)
            stack.pop()
        return memo[start] if start in memo else provisional[start]

    def _best(
        self, node: int, open_nodes: Set[int], provisional: Mapping[int, Ancestry]
    ) -> Tuple[Ancestry, bool]:
        name = self._names.get(node, "")
        best: Optional[Ancestry] = None
        exact = True
        for parent in self._parents.get(node, ()):
            if parent not in self._names:
                # dangling link: the walk stops here
                candidate = Ancestry((name,), None, 0)
            elif self._is_volume(parent):
                candidate = Ancestry((name,), parent, 1)
            elif parent in open_nodes:
                # cycle back onto the current walk
                candidate = Ancestry((name,), None, 0)
                exact = False
            elif parent in provisional:
                candidate = self._extend(provisional[parent], name)
                exact = False
            else:
                candidate = self._extend(self._memo[parent], name)
            if best is None or candidate.rank > best.rank:
                best = candidate
        if best is None:
            return Ancestry((name,), None, 0), True
        return best, exact

    def _extend(self, parent: Ancestry, name: str) -> Ancestry:
        depth = parent.depth + 1
        if depth > self._max_depth:
            # walk bound reached: keep the nearest segments, no volume
            segments = (parent.segments + (name,))[-(self._max_depth + 1):]
            return Ancestry(segments, None, self._max_depth)
        return Ancestry(parent.segments + (name,), parent.volume_id, depth)
