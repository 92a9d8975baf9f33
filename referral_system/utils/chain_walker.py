# referral_system/utils/chain_walker.py
"""
Safe referral chain walking utilities over an in-memory graph snapshot.
Prevents infinite loops on corrupted (cyclic) sponsor chains.
"""
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set, Union
import logging

from config import Config
from referral_system.graph.node import GraphNode, index_nodes

logger = logging.getLogger(__name__)

NodeSnapshot = Union[Iterable[GraphNode], Mapping[str, GraphNode]]


def _as_index(allNodes: NodeSnapshot) -> Mapping[str, GraphNode]:
    if isinstance(allNodes, Mapping):
        return allNodes
    return index_nodes(allNodes or [])


def findUpline(nodeId: str, allNodes: NodeSnapshot, maxDepth: int = 3) -> List[str]:
    """
    Ordered ancestor ids of a node: [sponsor, sponsor's sponsor, ...].

    The walk stops early when the next id cannot be resolved (that id is still
    returned, it is what the pointer names) or when it would revisit an id.

    Args:
        nodeId: Starting node id
        allNodes: Snapshot (list of nodes or id -> node mapping)
        maxDepth: Maximum number of ancestors to return

    Returns:
        At most maxDepth distinct ids, nearest ancestor first
    """
    if not maxDepth or maxDepth <= 0:
        return []

    index = _as_index(allNodes)
    current = index.get(nodeId)
    if current is None:
        return []

    chain: List[str] = []
    visited = {nodeId}
    nextId = current.sponsorId

    while nextId and len(chain) < maxDepth:
        if nextId in visited:
            logger.warning(f"Cycle detected in upline of {nodeId} at {nextId}")
            break

        chain.append(nextId)
        visited.add(nextId)

        current = index.get(nextId)
        if current is None:
            logger.warning(f"Upline not found: {nextId} (walking from {nodeId})")
            break

        nextId = current.sponsorId

    return chain


class ChainWalker:
    """
    Walks upline/downline over a snapshot.

    Downline follows sponsorId pointers (children index built once), upline
    follows sponsorId directly. Team lists are not trusted here.
    """

    def __init__(self, allNodes: NodeSnapshot, rootIds: Optional[Iterable[str]] = None):
        self.index = _as_index(allNodes)
        self.rootIds: Set[str] = set(rootIds) if rootIds is not None else set(Config.root_ids())
        self._children: Optional[Dict[str, List[GraphNode]]] = None

    @property
    def children(self) -> Dict[str, List[GraphNode]]:
        if self._children is None:
            children = defaultdict(list)
            for node in self.index.values():
                if node.sponsorId:
                    children[node.sponsorId].append(node)
            self._children = children
        return self._children

    def is_root(self, node: GraphNode) -> bool:
        return node.id in self.rootIds or node.isAdmin

    def walk_upline(
            self,
            start: GraphNode,
            callback: Callable[[GraphNode, int], bool],
            max_depth: Optional[int] = None
    ) -> int:
        """
        Walk up the sponsor chain, calling callback(node, level) per ancestor.

        Callback returns False to stop. Returns number of ancestors processed.
        """
        if max_depth is None:
            max_depth = Config.get(Config.MAX_CHAIN_DEPTH)

        processed = 0
        visited = {start.id}
        current = start
        level = 1

        while current.sponsorId and level <= max_depth:
            if current.sponsorId in visited:
                logger.error(f"Cycle detected at {current.sponsorId} walking from {start.id}")
                break

            upline = self.index.get(current.sponsorId)
            if upline is None:
                logger.debug(f"Upline {current.sponsorId} not found for {current.id}")
                break

            visited.add(upline.id)
            processed += 1
            if not callback(upline, level):
                break

            current = upline
            level += 1

        return processed

    def walk_downline(
            self,
            start: GraphNode,
            callback: Callable[[GraphNode, int], None],
            max_depth: Optional[int] = None,
            visited: Optional[Set[str]] = None
    ) -> int:
        """
        Walk the downline tree depth-first, calling callback(node, depth).

        Returns total number of nodes processed.
        """
        if max_depth is None:
            max_depth = Config.get(Config.MAX_CHAIN_DEPTH)
        if visited is None:
            visited = {start.id}

        processed = 0
        stack = [(start, 0)]

        while stack:
            node, depth = stack.pop()
            if depth >= max_depth:
                continue
            for child in reversed(self.children.get(node.id, [])):
                if child.id in visited:
                    logger.error(f"Cycle detected in downline at {child.id}")
                    continue
                visited.add(child.id)
                callback(child, depth + 1)
                processed += 1
                stack.append((child, depth + 1))

        return processed

    def get_upline_chain(self, node: GraphNode, max_depth: Optional[int] = None) -> List[GraphNode]:
        """Resolved ancestors, nearest first."""
        chain: List[GraphNode] = []

        def collect(upline: GraphNode, level: int) -> bool:
            chain.append(upline)
            return True

        self.walk_upline(node, collect, max_depth)
        return chain

    def count_downline(self, node: GraphNode, max_depth: Optional[int] = None) -> int:
        """Total number of nodes below node (by sponsor pointers)."""
        count = [0]

        def counter(downline: GraphNode, level: int) -> None:
            count[0] += 1

        self.walk_downline(node, counter, max_depth)
        return count[0]

    def is_ancestor(self, ancestorId: str, nodeId: str) -> bool:
        """True if ancestorId appears in nodeId's resolved sponsor chain."""
        node = self.index.get(nodeId)
        if node is None:
            return False

        found = [False]

        def check(upline: GraphNode, level: int) -> bool:
            if upline.id == ancestorId:
                found[0] = True
                return False
            return True

        self.walk_upline(node, check)
        return found[0]

    def would_create_cycle(self, childId: str, sponsorId: str) -> bool:
        """True if making sponsorId the sponsor of childId closes a loop."""
        return childId == sponsorId or self.is_ancestor(childId, sponsorId)

    def compute_depth(self, node: GraphNode) -> Optional[int]:
        """
        Distance from the chain's root.

        None when the chain is broken, cyclic, too deep or ends at a node
        that is not a root (orphan branch).
        """
        max_depth = Config.get(Config.MAX_CHAIN_DEPTH)
        visited = {node.id}
        current = node
        hops = 0

        while current.sponsorId:
            if hops >= max_depth or current.sponsorId in visited:
                return None
            upline = self.index.get(current.sponsorId)
            if upline is None:
                return None
            visited.add(upline.id)
            current = upline
            hops += 1

        if not self.is_root(current):
            return None
        return hops
