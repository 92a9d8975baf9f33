# referral_system/services/integrity_service.py
"""
Graph integrity analysis - full-graph scan for structural defects.

The analyzer is the single authority on divergence between the two edge
representations (sponsorId pointer vs team list), dangling references,
duplicate identities and sponsor cycles. Defects are returned as Issue values;
nothing here raises on malformed data or writes anything.
"""
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
import logging

from config import Config
from referral_system.graph.node import GraphNode
from referral_system.graph.store import GraphStore
from referral_system.utils.chain_walker import ChainWalker

logger = logging.getLogger(__name__)


class IssueType(str, Enum):
    ORPHAN = "orphan"
    BROKEN_SPONSOR = "brokenSponsor"
    MISSING_CHILD = "missingChild"
    BROKEN_TEAM = "missingChild"
    TEAM_SPONSOR_MISMATCH = "teamSponsorMismatch"
    SPONSOR_TEAM_MISMATCH = "sponsorTeamMismatch"
    DUPLICATE_ID = "duplicateId"
    DUPLICATE_REFERRAL_CODE = "duplicateReferralCode"
    CYCLE = "cycle"
    DEPTH_MISMATCH = "depthMismatch"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


SEVERITY_ORDER = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


@dataclass
class Issue:
    type: IssueType
    severity: Severity
    nodeId: str
    description: str
    evidence: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        """Stable identity used to track handled issues."""
        parts = [self.type.value, self.nodeId]
        for name in ("parentId", "missingChildId", "sponsorId", "referralCode"):
            if self.evidence.get(name):
                parts.append(str(self.evidence[name]))
        return "-".join(parts)


def find_similar_ids(missingId: str, candidateIds: Iterable[str], limit: Optional[int] = None) -> List[str]:
    """
    Existing ids lexically close to a missing id (typo or rename targets).

    Leading zeros are ignored and either id may contain the other.
    """
    if limit is None:
        limit = Config.get(Config.SIMILAR_IDS_LIMIT)

    target = (missingId or "").lstrip("0").lower()
    if not target:
        return []

    similar = []
    for candidate in candidateIds:
        stripped = candidate.lstrip("0").lower()
        if not stripped or candidate == missingId:
            continue
        if target in stripped or stripped in target:
            similar.append(candidate)
            if len(similar) >= limit:
                break
    return similar


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _find_cycles(index: Dict[str, GraphNode]) -> List[List[str]]:
    """
    Sponsor-pointer cycles, each rotated to start at its smallest id.
    Linear: every node is settled once.
    """
    settled = set()
    cycles = []

    for start in index:
        if start in settled:
            continue

        path: List[str] = []
        position: Dict[str, int] = {}
        current: Optional[str] = start

        while current is not None and current in index and current not in settled:
            if current in position:
                loop = path[position[current]:]
                pivot = loop.index(min(loop))
                cycles.append(loop[pivot:] + loop[:pivot])
                break
            position[current] = len(path)
            path.append(current)
            current = index[current].sponsorId or None

        settled.update(path)

    return cycles


def analyze(
        allNodes: Iterable[GraphNode],
        rootAllowList: Optional[Iterable[str]] = None,
        recentOrphanDays: Optional[int] = None,
        now: Optional[datetime] = None,
        checkDepth: bool = False
) -> List[Issue]:
    """
    Scan a graph snapshot and return issues ordered critical -> low.

    Args:
        allNodes: Full snapshot; duplicate records are expected and reported
        rootAllowList: Ids exempt from orphan detection (Config default)
        recentOrphanDays: Window that flags an orphan as recently registered
        now: Reference time for the recent-orphan flag; without it the
            flag is None (no clock is read here)
        checkDepth: Also report advisory depth values that drifted (low)

    Returns:
        List of Issue, stable within each severity
    """
    roots = set(rootAllowList) if rootAllowList is not None else set(Config.root_ids())
    if recentOrphanDays is None:
        recentOrphanDays = Config.get(Config.RECENT_ORPHAN_DAYS)
    now = _as_utc(now) if now is not None else None

    issues: List[Issue] = []

    # ═══════════════════════════════════════════════════════════════════
    # PASS 1: id index, duplicate ids, referral codes
    # ═══════════════════════════════════════════════════════════════════
    records: "OrderedDict[str, List[GraphNode]]" = OrderedDict()
    for node in allNodes or []:
        if node is None or not node.id:
            logger.warning(f"Skipping record without id: {node!r}")
            continue
        records.setdefault(node.id, []).append(node)

    index: Dict[str, GraphNode] = OrderedDict((nid, recs[0]) for nid, recs in records.items())

    for nodeId, recs in records.items():
        if len(recs) > 1:
            issues.append(Issue(
                type=IssueType.DUPLICATE_ID,
                severity=Severity.CRITICAL,
                nodeId=nodeId,
                description=f"{len(recs)} records share id {nodeId}",
                evidence={
                    "count": len(recs),
                    "records": [
                        {
                            "recordKey": r.recordKey,
                            "name": r.displayName,
                            "sponsorId": r.sponsorId,
                            "referralCode": r.referralCode,
                            "teamSize": len(r.team or []),
                        }
                        for r in recs
                    ],
                },
            ))

    codes: "OrderedDict[str, List[str]]" = OrderedDict()
    for node in index.values():
        if node.referralCode:
            codes.setdefault(node.referralCode, []).append(node.id)

    for code, ids in codes.items():
        if len(ids) > 1:
            issues.append(Issue(
                type=IssueType.DUPLICATE_REFERRAL_CODE,
                severity=Severity.HIGH,
                nodeId=ids[0],
                description=f"Referral code {code} is shared by {', '.join(ids)}",
                evidence={"referralCode": code, "nodeIds": ids},
            ))

    # ═══════════════════════════════════════════════════════════════════
    # PASS 2: team arrays (missing children, team -> sponsor mismatches)
    # ═══════════════════════════════════════════════════════════════════
    claimedBy: Dict[str, List[str]] = {}
    for holder in index.values():
        seen = set()
        for childId in holder.team or []:
            if not childId or childId in seen:
                continue
            seen.add(childId)
            claimedBy.setdefault(childId, []).append(holder.id)

            child = index.get(childId)
            if child is None:
                issues.append(Issue(
                    type=IssueType.MISSING_CHILD,
                    severity=Severity.HIGH,
                    nodeId=holder.id,
                    description=f"Team of {holder.id} references missing node {childId}",
                    evidence={"missingChildId": childId, "currentTeam": list(holder.team)},
                ))
            elif childId == holder.id:
                issues.append(Issue(
                    type=IssueType.TEAM_SPONSOR_MISMATCH,
                    severity=Severity.HIGH,
                    nodeId=childId,
                    description=f"{holder.id} lists itself in its own team",
                    evidence={
                        "parentId": holder.id,
                        "selfReference": True,
                        "shouldBeSponsorId": None,
                        "currentSponsorId": child.sponsorId,
                    },
                ))
            elif child.sponsorId != holder.id:
                current = index.get(child.sponsorId) if child.sponsorId else None
                issues.append(Issue(
                    type=IssueType.TEAM_SPONSOR_MISMATCH,
                    severity=Severity.HIGH,
                    nodeId=childId,
                    description=(
                        f"{childId} is in the team of {holder.id}, "
                        f"but sponsorId = {child.sponsorId or 'NULL'}"
                    ),
                    evidence={
                        "parentId": holder.id,
                        "shouldBeSponsorId": holder.id,
                        "currentSponsorId": child.sponsorId,
                        # both sponsors claim the child: the right one is not known
                        "currentSponsorListsChild": bool(
                            current is not None and childId in (current.team or [])
                        ),
                    },
                ))

    # ═══════════════════════════════════════════════════════════════════
    # PASS 3: sponsor pointers (orphans, dangling sponsors, sponsor -> team)
    # ═══════════════════════════════════════════════════════════════════
    for node in index.values():
        if not node.sponsorId:
            if node.id in roots or node.isAdmin:
                continue

            recent = None if now is None else False
            if now is not None and node.registeredAt is not None and recentOrphanDays:
                recent = now - _as_utc(node.registeredAt) < timedelta(days=recentOrphanDays)

            issues.append(Issue(
                type=IssueType.ORPHAN,
                severity=Severity.HIGH,
                nodeId=node.id,
                description=f"{node.id} ({node.displayName}) has no sponsor",
                evidence={
                    "teamSize": len(node.team or []),
                    "hasTeam": bool(node.team),
                    "claimedBy": claimedBy.get(node.id, []),
                    "registeredAt": node.registeredAt.isoformat() if node.registeredAt else None,
                    "recent": recent,
                    "invitationCode": node.invitationCode,
                },
            ))
            continue

        sponsor = index.get(node.sponsorId)
        if sponsor is None:
            issues.append(Issue(
                type=IssueType.BROKEN_SPONSOR,
                severity=Severity.CRITICAL,
                nodeId=node.id,
                description=f"{node.id} references missing sponsor {node.sponsorId}",
                evidence={
                    "brokenSponsorId": node.sponsorId,
                    "similarIds": find_similar_ids(node.sponsorId, index.keys()),
                },
            ))
        elif sponsor.id != node.id and node.id not in (sponsor.team or []):
            issues.append(Issue(
                type=IssueType.SPONSOR_TEAM_MISMATCH,
                severity=Severity.MEDIUM,
                nodeId=node.id,
                description=(
                    f"{node.id} has sponsorId={sponsor.id}, "
                    f"but is missing from the team of {sponsor.id}"
                ),
                evidence={"sponsorId": sponsor.id, "sponsorTeam": list(sponsor.team or [])},
            ))

    # ═══════════════════════════════════════════════════════════════════
    # PASS 4: cycles and advisory depth
    # ═══════════════════════════════════════════════════════════════════
    for loop in _find_cycles(index):
        issues.append(Issue(
            type=IssueType.CYCLE,
            severity=Severity.CRITICAL,
            nodeId=loop[0],
            description=f"Sponsor cycle: {' -> '.join(loop + [loop[0]])}",
            evidence={"cycle": loop, "length": len(loop)},
        ))

    if checkDepth:
        walker = ChainWalker(index, roots)
        for node in index.values():
            computed = walker.compute_depth(node)
            if computed is not None and computed != node.depth:
                issues.append(Issue(
                    type=IssueType.DEPTH_MISMATCH,
                    severity=Severity.LOW,
                    nodeId=node.id,
                    description=f"{node.id} stores depth {node.depth}, actual distance from root is {computed}",
                    evidence={"currentDepth": node.depth, "computedDepth": computed},
                ))

    issues.sort(key=lambda i: SEVERITY_ORDER[i.severity])

    logger.debug(f"Analysis complete: {len(index)} nodes, {len(issues)} issues")
    return issues


def summarize(issues: Iterable[Issue]) -> Dict[str, Any]:
    """Counts of issues by severity and by type."""
    by_severity = {s.value: 0 for s in Severity}
    by_type: Dict[str, int] = {}
    total = 0
    for issue in issues:
        total += 1
        by_severity[issue.severity.value] += 1
        by_type[issue.type.value] = by_type.get(issue.type.value, 0) + 1
    return {"total": total, "bySeverity": by_severity, "byType": by_type}


class IntegrityService:
    """Runs the analyzer against a fresh snapshot from the store."""

    def __init__(self, store: GraphStore, rootAllowList: Optional[Iterable[str]] = None):
        self.store = store
        self.rootAllowList = list(rootAllowList) if rootAllowList is not None else Config.root_ids()

    def run(self, now: Optional[datetime] = None, checkDepth: bool = True) -> List[Issue]:
        nodes = self.store.listAll()
        if now is None:
            now = datetime.now(timezone.utc)
        issues = analyze(nodes, self.rootAllowList, now=now, checkDepth=checkDepth)

        summary = summarize(issues)
        if summary["total"] == 0:
            logger.info(f"✓ Graph is consistent ({len(nodes)} records)")
        else:
            logger.warning(
                f"Found {summary['total']} issues in {len(nodes)} records "
                f"(critical={summary['bySeverity']['critical']}, "
                f"high={summary['bySeverity']['high']}, "
                f"medium={summary['bySeverity']['medium']}, "
                f"low={summary['bySeverity']['low']})"
            )
        return issues
