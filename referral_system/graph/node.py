# referral_system/graph/node.py
"""
Typed in-memory representation of a referral graph node.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Mapping, Optional


@dataclass
class GraphNode:
    """
    One partner/guest account.

    sponsorId and team are the two redundant edge representations:
    u.sponsorId == s.id  <=>  u.id in s.team  (when the graph is consistent).
    """
    id: str
    sponsorId: Optional[str] = None
    team: List[str] = field(default_factory=list)
    referralCode: Optional[str] = None
    invitationCode: Optional[str] = None
    depth: int = 0
    firstname: Optional[str] = None
    surname: Optional[str] = None
    isAdmin: bool = False
    registeredAt: Optional[datetime] = None
    recordKey: Optional[int] = None  # store record key, tells duplicates apart

    # Record data the graph engine carries but never changes
    balanceActive: Optional[Decimal] = None
    balancePassive: Optional[Decimal] = None
    createdAt: Optional[datetime] = None

    @property
    def displayName(self) -> str:
        name = " ".join(p for p in (self.firstname, self.surname) if p)
        return name or self.id

    def copy(self, **changes) -> "GraphNode":
        """Shallow copy with its own team list."""
        changes.setdefault("team", list(self.team or []))
        return replace(self, **changes)


def index_nodes(nodes) -> Dict[str, GraphNode]:
    """
    Build id -> node index. First record wins when ids collide.
    """
    if isinstance(nodes, Mapping):
        return dict(nodes)

    index: Dict[str, GraphNode] = {}
    for node in nodes:
        if node is None or not node.id:
            continue
        index.setdefault(node.id, node)
    return index
