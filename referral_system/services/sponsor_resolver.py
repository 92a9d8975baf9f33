# referral_system/services/sponsor_resolver.py
"""
Heuristic sponsor resolution for orphaned nodes.

Only proposes; never writes. Applying a suggestion is the repair service's job.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional
import logging

from config import Config
from referral_system.graph.node import GraphNode, index_nodes
from referral_system.utils.chain_walker import ChainWalker

logger = logging.getLogger(__name__)


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


CONFIDENCE_ORDER = {Confidence.HIGH: 0, Confidence.MEDIUM: 1, Confidence.LOW: 2}


@dataclass
class Suggestion:
    orphan: GraphNode
    candidate: Optional[GraphNode]
    confidence: Confidence
    reason: str
    hasChildren: bool = False
    childrenCount: int = 0

    @property
    def candidateId(self) -> Optional[str]:
        return self.candidate.id if self.candidate else None


def suggestSponsor(orphan: GraphNode, allNodes: Iterable[GraphNode]) -> Suggestion:
    """
    Propose the most likely sponsor of an orphan.

    high   - orphan's invitationCode equals another node's referralCode
    medium - no code match, but some node lists the orphan in its team
    low    - nothing to go on; candidate is None

    A candidate inside the orphan's own downline is refused (it would close
    a sponsor cycle).
    """
    index = index_nodes(allNodes)
    childrenCount = len(orphan.team or [])

    candidate: Optional[GraphNode] = None
    confidence = Confidence.LOW

    if orphan.invitationCode:
        for node in index.values():
            if node.id != orphan.id and node.referralCode == orphan.invitationCode:
                candidate = node
                break
        if candidate is not None:
            confidence = Confidence.HIGH
            reason = f'Invitation code "{orphan.invitationCode}" matches the referral code of {candidate.id}'
        else:
            reason = f'Invitation code "{orphan.invitationCode}" does not match any referral code'
    else:
        reason = "Orphan has no invitation code"

    if candidate is None:
        claimers = [
            node for node in index.values()
            if node.id != orphan.id and orphan.id in (node.team or [])
        ]
        if claimers:
            candidate = claimers[0]
            confidence = Confidence.MEDIUM
            reason = f"{reason}; listed in the team of {', '.join(n.id for n in claimers)}"

    if candidate is not None:
        walker = ChainWalker(index, rootIds=[])
        if walker.would_create_cycle(orphan.id, candidate.id):
            logger.warning(f"Rejected sponsor {candidate.id} for {orphan.id}: would create a cycle")
            reason = f"{candidate.id} is in the downline of {orphan.id}; assigning it would create a cycle"
            candidate = None
            confidence = Confidence.LOW

    return Suggestion(
        orphan=orphan,
        candidate=candidate,
        confidence=confidence,
        reason=reason,
        hasChildren=childrenCount > 0,
        childrenCount=childrenCount,
    )


def analyzeOrphans(
        allNodes: Iterable[GraphNode],
        rootAllowList: Optional[Iterable[str]] = None
) -> List[Suggestion]:
    """
    Suggestions for every orphan: orphans with children first (higher
    stakes), then by confidence.
    """
    index = index_nodes(allNodes or [])
    roots = set(rootAllowList) if rootAllowList is not None else set(Config.root_ids())

    orphans = [
        node for node in index.values()
        if not node.sponsorId and node.id not in roots and not node.isAdmin
    ]

    suggestions = [suggestSponsor(orphan, index) for orphan in orphans]
    suggestions.sort(key=lambda s: (not s.hasChildren, CONFIDENCE_ORDER[s.confidence]))

    high = sum(1 for s in suggestions if s.confidence == Confidence.HIGH)
    logger.info(
        f"Orphan analysis: {len(suggestions)} orphans, {high} high confidence, "
        f"{sum(1 for s in suggestions if s.hasChildren)} with children"
    )
    return suggestions
