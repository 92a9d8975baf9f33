# referral_system/services/repair_service.py
"""
Graph repair executor - turns analyzer issues into store writes.

Every fix is read-modify-write on the specific node(s) involved: the node is
re-read right before it is written, the analysis snapshot is never trusted
for the write itself. Fixes that touch both edge representations write the
pointer side first, then the team side. Nothing is transactional; a fix stops
at its first failed write and reports what was applied.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional
import logging

from config import Config
from referral_system.errors import GraphStoreError, RecordNotFoundError
from referral_system.graph.node import GraphNode
from referral_system.graph.store import GraphStore
from referral_system.services.integrity_service import Issue, IssueType
from referral_system.services.sponsor_resolver import Confidence, analyzeOrphans, suggestSponsor
from referral_system.utils.chain_walker import ChainWalker

logger = logging.getLogger(__name__)


class FixStatus(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"  # fresh read shows the issue no longer applies
    MANUAL = "manual"  # requires manual resolution, nothing written
    REJECTED = "rejected"  # precondition failed, nothing written
    FAILED = "failed"  # store error


MANUAL_TYPES = (IssueType.DUPLICATE_ID, IssueType.DUPLICATE_REFERRAL_CODE, IssueType.CYCLE)


@dataclass
class FieldChange:
    nodeId: str
    field: str
    oldValue: Any
    newValue: Any

    def describe(self) -> str:
        return f"{self.nodeId}.{self.field}: {self.oldValue!r} -> {self.newValue!r}"


@dataclass
class _Write:
    """One node write: preview change + mutation applied to a fresh read."""
    change: FieldChange
    mutate: Callable[[GraphNode], Optional[GraphNode]]

    @property
    def nodeId(self) -> str:
        return self.change.nodeId


@dataclass
class FixPlan:
    """What a fix would write, for operator confirmation."""
    issue: Optional[Issue]
    status: FixStatus
    message: str
    writes: List[_Write] = field(default_factory=list)

    @property
    def changes(self) -> List[FieldChange]:
        return [w.change for w in self.writes]

    @property
    def executable(self) -> bool:
        return self.status == FixStatus.APPLIED and bool(self.writes)

    def describe(self) -> str:
        lines = [self.message]
        lines.extend(f"  {c.describe()}" for c in self.changes)
        return "\n".join(lines)


@dataclass
class FixResult:
    issue: Optional[Issue]
    status: FixStatus
    message: str
    changes: List[FieldChange] = field(default_factory=list)
    failedChange: Optional[FieldChange] = None

    @property
    def success(self) -> bool:
        return self.status in (FixStatus.APPLIED, FixStatus.SKIPPED)


@dataclass
class BatchResult:
    results: List[FixResult] = field(default_factory=list)
    notEligible: int = 0

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.status == FixStatus.SKIPPED)

    def summary(self) -> str:
        lines = [f"Fixed: {self.succeeded}, failed: {self.failed}, skipped: {self.skipped}"]
        for r in self.results:
            target = r.issue.key if r.issue else "assign"
            lines.append(f"  [{r.status.value}] {target}: {r.message}")
        return "\n".join(lines)


# ═══════════════════════════════════════════════════════════════════════════
# WRITE BUILDERS
# ═══════════════════════════════════════════════════════════════════════════

def _set_sponsor(node: GraphNode, sponsorId: Optional[str]) -> _Write:
    return _Write(
        change=FieldChange(node.id, "sponsorId", node.sponsorId, sponsorId),
        mutate=lambda fresh: None if fresh.sponsorId == sponsorId else fresh.copy(sponsorId=sponsorId),
    )


def _append_to_team(holder: GraphNode, childId: str) -> _Write:
    return _Write(
        change=FieldChange(holder.id, "team", list(holder.team), list(holder.team) + [childId]),
        mutate=lambda fresh: None if childId in fresh.team else fresh.copy(team=list(fresh.team) + [childId]),
    )


def _remove_from_team(holder: GraphNode, childId: str) -> _Write:
    return _Write(
        change=FieldChange(
            holder.id, "team", list(holder.team), [x for x in holder.team if x != childId]
        ),
        mutate=lambda fresh: None if childId not in fresh.team
        else fresh.copy(team=[x for x in fresh.team if x != childId]),
    )


def _set_depth(node: GraphNode, depth: int) -> _Write:
    return _Write(
        change=FieldChange(node.id, "depth", node.depth, depth),
        mutate=lambda fresh: None if fresh.depth == depth else fresh.copy(depth=depth),
    )


class RepairService:
    """Applies single fixes and safe batches through a GraphStore."""

    def __init__(self, store: GraphStore, rootAllowList: Optional[Iterable[str]] = None):
        self.store = store
        self.rootAllowList = list(rootAllowList) if rootAllowList is not None else Config.root_ids()

    # ═══════════════════════════════════════════════════════════════════════
    # PUBLIC API
    # ═══════════════════════════════════════════════════════════════════════

    @staticmethod
    def isSafe(issue: Issue) -> bool:
        """
        Safe for unattended batch fixing: dangling team entries, and team ->
        sponsor mismatches where only one parent claims the child.
        """
        if issue.type == IssueType.MISSING_CHILD:
            return bool(issue.evidence.get("missingChildId"))
        if issue.type == IssueType.TEAM_SPONSOR_MISMATCH:
            return (
                    bool(issue.evidence.get("shouldBeSponsorId"))
                    and not issue.evidence.get("selfReference")
                    and not issue.evidence.get("currentSponsorListsChild")
            )
        return False

    def planFix(self, issue: Issue, sponsorId: Optional[str] = None) -> FixPlan:
        """
        Preview of a fix against freshly read nodes. Writes nothing.

        Args:
            issue: Issue from the analyzer
            sponsorId: Explicit sponsor choice (brokenSponsor, orphan,
                conflicting teamSponsorMismatch)
        """
        try:
            return self._plan(issue, sponsorId)
        except GraphStoreError as e:
            logger.error(f"Failed to plan fix for {issue.key}: {e}")
            return FixPlan(issue, FixStatus.FAILED, f"Store error while reading: {e}")

    def applyFix(self, issue: Issue, sponsorId: Optional[str] = None) -> FixResult:
        """Plan and execute one fix. Never raises on store errors."""
        plan = self.planFix(issue, sponsorId)
        return self._execute(plan)

    def applyBatch(self, issues: Iterable[Issue]) -> BatchResult:
        """
        Fix all safe issues sequentially. One failure never aborts the batch.
        Re-run the analyzer afterwards to confirm the new state.
        """
        batch = BatchResult()
        safe = []
        for issue in issues:
            if self.isSafe(issue):
                safe.append(issue)
            else:
                batch.notEligible += 1

        logger.info(f"Batch fix: {len(safe)} safe issues ({batch.notEligible} need review)")

        for issue in safe:
            batch.results.append(self.applyFix(issue))

        logger.info(
            f"✓ Batch fix complete: succeeded={batch.succeeded}, "
            f"failed={batch.failed}, skipped={batch.skipped}"
        )
        return batch

    def planAssignSponsor(self, childId: str, sponsorId: str) -> FixPlan:
        """Preview of a manual sponsor assignment."""
        try:
            return self._planAssign(childId, sponsorId)
        except GraphStoreError as e:
            logger.error(f"Failed to plan sponsor assignment {childId} -> {sponsorId}: {e}")
            return FixPlan(None, FixStatus.FAILED, f"Store error while reading: {e}")

    def assignSponsor(self, childId: str, sponsorId: str) -> FixResult:
        """
        Set childId's sponsor to sponsorId and keep both team lists in step:
        child pointer first, then the new sponsor's team, then removal from
        the previous sponsor's team.
        """
        return self._execute(self.planAssignSponsor(childId, sponsorId))

    def fixHighConfidenceOrphans(self, allNodes: Optional[List[GraphNode]] = None) -> BatchResult:
        """Assign sponsors to every orphan with a high-confidence suggestion."""
        snapshot = allNodes if allNodes is not None else self.store.listAll()
        suggestions = [
            s for s in analyzeOrphans(snapshot, self.rootAllowList)
            if s.confidence == Confidence.HIGH and s.candidate is not None
        ]

        batch = BatchResult(notEligible=0)
        for suggestion in suggestions:
            if suggestion.hasChildren:
                logger.info(
                    f"Orphan {suggestion.orphan.id} has {suggestion.childrenCount} children, "
                    f"reattaching under {suggestion.candidateId}"
                )
            batch.results.append(self.assignSponsor(suggestion.orphan.id, suggestion.candidateId))

        logger.info(
            f"✓ Orphan batch complete: succeeded={batch.succeeded}, failed={batch.failed}"
        )
        return batch

    # ═══════════════════════════════════════════════════════════════════════
    # PLANNING
    # ═══════════════════════════════════════════════════════════════════════

    def _read(self, nodeId: Optional[str]) -> Optional[GraphNode]:
        if not nodeId:
            return None
        return self.store.getOne(nodeId)

    def _wouldCreateCycle(self, childId: str, sponsorId: str) -> bool:
        walker = ChainWalker(self.store.listAll(), rootIds=[])
        return walker.would_create_cycle(childId, sponsorId)

    def _plan(self, issue: Issue, sponsorId: Optional[str]) -> FixPlan:
        if issue.type in MANUAL_TYPES:
            return FixPlan(issue, FixStatus.MANUAL, f"{issue.type.value} requires manual resolution")

        handlers = {
            IssueType.BROKEN_SPONSOR: self._planBrokenSponsor,
            IssueType.TEAM_SPONSOR_MISMATCH: self._planTeamSponsorMismatch,
            IssueType.SPONSOR_TEAM_MISMATCH: self._planSponsorTeamMismatch,
            IssueType.MISSING_CHILD: self._planMissingChild,
            IssueType.ORPHAN: self._planOrphan,
            IssueType.DEPTH_MISMATCH: self._planDepth,
        }
        handler = handlers.get(issue.type)
        if handler is None:
            return FixPlan(issue, FixStatus.MANUAL, f"No automatic fix for {issue.type.value}")
        return handler(issue, sponsorId)

    def _planBrokenSponsor(self, issue: Issue, sponsorId: Optional[str]) -> FixPlan:
        node = self._read(issue.nodeId)
        broken = issue.evidence.get("brokenSponsorId")
        if node is None:
            return FixPlan(issue, FixStatus.SKIPPED, f"{issue.nodeId} no longer exists")
        if node.sponsorId != broken:
            return FixPlan(issue, FixStatus.SKIPPED, f"Sponsor of {node.id} changed to {node.sponsorId}")
        if self._read(broken) is not None:
            return FixPlan(issue, FixStatus.SKIPPED, f"Sponsor {broken} exists again")

        target = None
        if sponsorId:
            target = self._read(sponsorId)
            if target is None:
                return FixPlan(issue, FixStatus.REJECTED, f"Sponsor {sponsorId} not found")
        else:
            for candidateId in issue.evidence.get("similarIds") or []:
                target = self._read(candidateId)
                if target is not None and target.id != node.id:
                    break
                target = None

        if target is None:
            return FixPlan(
                issue, FixStatus.APPLIED,
                f"No similar sponsor found; clearing sponsorId of {node.id} (becomes an orphan)",
                [_set_sponsor(node, None)],
            )

        if self._wouldCreateCycle(node.id, target.id):
            return FixPlan(issue, FixStatus.REJECTED, f"Assigning {target.id} to {node.id} would create a cycle")

        return FixPlan(
            issue, FixStatus.APPLIED,
            f"Repoint {node.id} from missing {broken} to {target.id}",
            [_set_sponsor(node, target.id), _append_to_team(target, node.id)],
        )

    def _planTeamSponsorMismatch(self, issue: Issue, sponsorId: Optional[str]) -> FixPlan:
        parentId = issue.evidence.get("parentId")
        parent = self._read(parentId)
        if parent is None:
            return FixPlan(issue, FixStatus.SKIPPED, f"{parentId} no longer exists")

        if issue.evidence.get("selfReference"):
            if parent.id not in parent.team:
                return FixPlan(issue, FixStatus.SKIPPED, f"{parent.id} no longer lists itself")
            return FixPlan(
                issue, FixStatus.APPLIED,
                f"Remove {parent.id} from its own team",
                [_remove_from_team(parent, parent.id)],
            )

        child = self._read(issue.nodeId)
        if child is None:
            return FixPlan(issue, FixStatus.SKIPPED, f"{issue.nodeId} no longer exists")
        if child.id not in parent.team:
            return FixPlan(issue, FixStatus.SKIPPED, f"{child.id} is no longer in the team of {parent.id}")
        if child.sponsorId == parent.id:
            return FixPlan(issue, FixStatus.SKIPPED, f"{child.id} already has sponsorId={parent.id}")
        if sponsorId and sponsorId != parent.id:
            return FixPlan(
                issue, FixStatus.REJECTED,
                f"Chosen sponsor {sponsorId} is not the team holder {parent.id}",
            )

        previous = self._read(child.sponsorId)
        writes = [_set_sponsor(child, parent.id)]
        if previous is not None and child.id in previous.team:
            if sponsorId != parent.id:
                return FixPlan(
                    issue, FixStatus.MANUAL,
                    f"{child.id} is claimed by both {previous.id} and {parent.id}; choose the sponsor explicitly",
                )
            writes.append(_remove_from_team(previous, child.id))

        if self._wouldCreateCycle(child.id, parent.id):
            return FixPlan(issue, FixStatus.REJECTED, f"Assigning {parent.id} to {child.id} would create a cycle")

        return FixPlan(
            issue, FixStatus.APPLIED,
            f"Set sponsorId of {child.id} to {parent.id} (was {child.sponsorId or 'NULL'})",
            writes,
        )

    def _planSponsorTeamMismatch(self, issue: Issue, sponsorId: Optional[str]) -> FixPlan:
        child = self._read(issue.nodeId)
        if child is None:
            return FixPlan(issue, FixStatus.SKIPPED, f"{issue.nodeId} no longer exists")
        expected = issue.evidence.get("sponsorId")
        if child.sponsorId != expected:
            return FixPlan(issue, FixStatus.SKIPPED, f"Sponsor of {child.id} changed to {child.sponsorId}")

        sponsor = self._read(child.sponsorId)
        if sponsor is None:
            return FixPlan(issue, FixStatus.SKIPPED, f"Sponsor {child.sponsorId} no longer exists")
        if child.id in sponsor.team:
            return FixPlan(issue, FixStatus.SKIPPED, f"{child.id} is already in the team of {sponsor.id}")

        return FixPlan(
            issue, FixStatus.APPLIED,
            f"Add {child.id} to the team of {sponsor.id}",
            [_append_to_team(sponsor, child.id)],
        )

    def _planMissingChild(self, issue: Issue, sponsorId: Optional[str]) -> FixPlan:
        holder = self._read(issue.nodeId)
        missingId = issue.evidence.get("missingChildId")
        if holder is None:
            return FixPlan(issue, FixStatus.SKIPPED, f"{issue.nodeId} no longer exists")
        if missingId not in holder.team:
            return FixPlan(issue, FixStatus.SKIPPED, f"{missingId} is no longer in the team of {holder.id}")
        if self._read(missingId) is not None:
            return FixPlan(issue, FixStatus.SKIPPED, f"{missingId} exists again")

        return FixPlan(
            issue, FixStatus.APPLIED,
            f"Remove dangling {missingId} from the team of {holder.id}",
            [_remove_from_team(holder, missingId)],
        )

    def _planOrphan(self, issue: Issue, sponsorId: Optional[str]) -> FixPlan:
        orphan = self._read(issue.nodeId)
        if orphan is None:
            return FixPlan(issue, FixStatus.SKIPPED, f"{issue.nodeId} no longer exists")
        if orphan.sponsorId:
            return FixPlan(issue, FixStatus.SKIPPED, f"{orphan.id} already has sponsor {orphan.sponsorId}")

        if sponsorId:
            return self._planAssign(orphan.id, sponsorId, issue)

        suggestion = suggestSponsor(orphan, self.store.listAll())
        if suggestion.candidate is None:
            return FixPlan(issue, FixStatus.MANUAL, f"Requires manual resolution: {suggestion.reason}")

        plan = self._planAssign(orphan.id, suggestion.candidate.id, issue)
        warning = f" ({suggestion.childrenCount} children)" if suggestion.hasChildren else ""
        plan.message = f"{plan.message}{warning} [{suggestion.confidence.value}: {suggestion.reason}]"
        return plan

    def _planDepth(self, issue: Issue, sponsorId: Optional[str]) -> FixPlan:
        node = self._read(issue.nodeId)
        computed = issue.evidence.get("computedDepth")
        if node is None or computed is None:
            return FixPlan(issue, FixStatus.SKIPPED, f"{issue.nodeId} no longer exists")
        if node.depth == computed:
            return FixPlan(issue, FixStatus.SKIPPED, f"{node.id} already has depth {computed}")
        return FixPlan(
            issue, FixStatus.APPLIED,
            f"Set depth of {node.id} to {computed}",
            [_set_depth(node, computed)],
        )

    def _planAssign(self, childId: str, sponsorId: str, issue: Optional[Issue] = None) -> FixPlan:
        if not childId or not sponsorId:
            return FixPlan(issue, FixStatus.REJECTED, "Both child and sponsor ids are required")
        if childId == sponsorId:
            return FixPlan(issue, FixStatus.REJECTED, "A node cannot sponsor itself")

        child = self._read(childId)
        if child is None:
            return FixPlan(issue, FixStatus.REJECTED, f"Node {childId} not found")
        sponsor = self._read(sponsorId)
        if sponsor is None:
            return FixPlan(issue, FixStatus.REJECTED, f"Sponsor {sponsorId} not found")
        if self._wouldCreateCycle(childId, sponsorId):
            return FixPlan(
                issue, FixStatus.REJECTED,
                f"{sponsorId} is in the downline of {childId}; assignment would create a cycle",
            )

        writes = []
        if child.sponsorId != sponsorId:
            writes.append(_set_sponsor(child, sponsorId))
        if childId not in sponsor.team:
            writes.append(_append_to_team(sponsor, childId))

        previous = self._read(child.sponsorId) if child.sponsorId != sponsorId else None
        if previous is not None and childId in previous.team:
            writes.append(_remove_from_team(previous, childId))

        if not writes:
            return FixPlan(issue, FixStatus.SKIPPED, f"{childId} is already sponsored by {sponsorId}")

        return FixPlan(issue, FixStatus.APPLIED, f"Assign sponsor {sponsorId} to {childId}", writes)

    # ═══════════════════════════════════════════════════════════════════════
    # EXECUTION
    # ═══════════════════════════════════════════════════════════════════════

    def _execute(self, plan: FixPlan) -> FixResult:
        target = plan.issue.key if plan.issue else "assignment"

        if not plan.executable:
            if plan.status == FixStatus.SKIPPED:
                logger.warning(f"Skipped {target}: {plan.message}")
            elif plan.status == FixStatus.FAILED:
                logger.error(f"Fix {target} failed: {plan.message}")
            else:
                logger.info(f"Not applied {target} ({plan.status.value}): {plan.message}")
            status = plan.status if plan.status != FixStatus.APPLIED else FixStatus.SKIPPED
            return FixResult(plan.issue, status, plan.message)

        applied: List[FieldChange] = []
        for write in plan.writes:
            try:
                self._write(write)
            except GraphStoreError as e:
                logger.error(f"Fix {target} failed at {write.change.describe()}: {e}")
                return FixResult(
                    plan.issue,
                    FixStatus.FAILED,
                    f"{plan.message}: write to {write.nodeId} failed ({e})",
                    changes=applied,
                    failedChange=write.change,
                )
            applied.append(write.change)

        logger.info(f"✓ Fixed {target}: {plan.message}")
        return FixResult(plan.issue, FixStatus.APPLIED, plan.message, changes=applied)

    def _write(self, write: _Write) -> None:
        fresh = self.store.getOne(write.nodeId)
        if fresh is None:
            raise RecordNotFoundError(write.nodeId)

        updated = write.mutate(fresh)
        if updated is not None:
            self.store.put(write.nodeId, updated)
