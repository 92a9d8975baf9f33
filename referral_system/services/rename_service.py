# referral_system/services/rename_service.py
"""
Identity rename - change a node's id and cascade the change to every
sponsorId pointer and team entry that references it.

Not transactional: the node is moved first (write under the new id, then
delete the old record), then every referencing node is rewritten on its own.
Cascade failures are collected and reported, never rolled back.
"""
from dataclasses import dataclass, field
from typing import List, Optional
import logging

from referral_system.errors import GraphStoreError
from referral_system.graph.node import GraphNode
from referral_system.graph.store import GraphStore

logger = logging.getLogger(__name__)


@dataclass
class RenameFailure:
    nodeId: str
    step: str  # "move", "delete", "cascade"
    error: str


@dataclass
class RenameResult:
    oldId: str
    newId: str
    success: bool = False
    rejected: bool = False
    message: str = ""
    updated: List[str] = field(default_factory=list)  # nodes whose references were rewritten
    failures: List[RenameFailure] = field(default_factory=list)

    def summary(self) -> str:
        lines = [f"{self.oldId} -> {self.newId}: {self.message}"]
        if self.updated:
            lines.append(f"  Updated references: {', '.join(self.updated)}")
        for failure in self.failures:
            lines.append(f"  FAILED [{failure.step}] {failure.nodeId}: {failure.error}")
        return "\n".join(lines)


def _replace_references(node: GraphNode, oldId: str, newId: str) -> Optional[GraphNode]:
    """Copy of node with oldId replaced by newId; None if it has no reference."""
    sponsor_hit = node.sponsorId == oldId
    team_hit = oldId in (node.team or [])
    if not sponsor_hit and not team_hit:
        return None

    return node.copy(
        sponsorId=newId if sponsor_hit else node.sponsorId,
        team=[newId if x == oldId else x for x in node.team or []],
    )


class RenameService:
    """Renames node ids through a GraphStore."""

    def __init__(self, store: GraphStore):
        self.store = store

    def _reject(self, result: RenameResult, message: str) -> RenameResult:
        result.rejected = True
        result.message = message
        logger.warning(f"Rename {result.oldId} -> {result.newId} rejected: {message}")
        return result

    def renameId(self, oldId: str, newId: str) -> RenameResult:
        """
        Rename oldId to newId and rewrite all inbound references.

        Preconditions (checked before any write): both ids non-empty,
        oldId != newId, oldId exists exactly once, newId unused (re-read
        from the store right before the move).

        Returns:
            RenameResult with the itemized cascade outcome
        """
        oldId = (oldId or "").strip()
        newId = (newId or "").strip()
        result = RenameResult(oldId=oldId, newId=newId)

        if not oldId or not newId:
            return self._reject(result, "Both old and new id are required")
        if oldId == newId:
            return self._reject(result, "Old and new id are the same")

        try:
            snapshot = self.store.listAll()
        except GraphStoreError as e:
            logger.error(f"Rename {oldId} -> {newId}: failed to load snapshot: {e}")
            result.message = f"Failed to load graph: {e}"
            result.failures.append(RenameFailure(oldId, "move", str(e)))
            return result

        records = [n for n in snapshot if n.id == oldId]
        if not records:
            return self._reject(result, f"Node {oldId} not found")
        if len(records) > 1:
            return self._reject(result, f"Id {oldId} is shared by {len(records)} records; resolve duplicates first")
        if any(n.id == newId for n in snapshot):
            return self._reject(result, f"Id {newId} is already taken")

        logger.info(f"Renaming {oldId} -> {newId}")

        # ═══════════════════════════════════════════════════════════════
        # STEP 1: move the node under the new id
        # ═══════════════════════════════════════════════════════════════
        try:
            node = self.store.getOne(oldId)
            if node is None:
                return self._reject(result, f"Node {oldId} not found")
            # put is an upsert: never overwrite a record created since the snapshot
            if self.store.getOne(newId) is not None:
                return self._reject(result, f"Id {newId} is already taken")
            moved = _replace_references(node, oldId, newId) or node.copy()
            moved.id = newId
            self.store.put(newId, moved)
        except GraphStoreError as e:
            logger.error(f"Rename {oldId} -> {newId}: failed to write new record: {e}")
            result.message = f"Failed to write {newId}: {e}"
            result.failures.append(RenameFailure(newId, "move", str(e)))
            return result

        try:
            self.store.delete(oldId)
        except GraphStoreError as e:
            logger.error(f"Rename {oldId} -> {newId}: failed to delete old record: {e}")
            result.failures.append(RenameFailure(oldId, "delete", str(e)))

        # ═══════════════════════════════════════════════════════════════
        # STEP 2: cascade to every referencing node, one write each
        # ═══════════════════════════════════════════════════════════════
        referencing = []
        seen = {oldId, newId}
        for other in snapshot:
            if other.id in seen:
                continue
            seen.add(other.id)
            if _replace_references(other, oldId, newId) is not None:
                referencing.append(other.id)

        for nodeId in referencing:
            try:
                fresh = self.store.getOne(nodeId)
                if fresh is None:
                    logger.warning(f"Rename cascade: {nodeId} disappeared, skipping")
                    continue
                updated = _replace_references(fresh, oldId, newId)
                if updated is None:
                    continue
                self.store.put(nodeId, updated)
                result.updated.append(nodeId)
            except GraphStoreError as e:
                logger.error(f"Rename cascade: failed to update {nodeId}: {e}")
                result.failures.append(RenameFailure(nodeId, "cascade", str(e)))

        result.success = not result.failures
        if result.success:
            result.message = f"Renamed, {len(result.updated)} references updated"
            logger.info(f"✓ Renamed {oldId} -> {newId}: {len(result.updated)} references updated")
        else:
            result.message = (
                f"Renamed with {len(result.failures)} failures, "
                f"{len(result.updated)} references updated"
            )
            logger.warning(f"Rename {oldId} -> {newId} incomplete: {len(result.failures)} failures")

        return result
