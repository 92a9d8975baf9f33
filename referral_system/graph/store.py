# referral_system/graph/store.py
"""
Graph store adapter.

The engine talks to storage only through GraphStore: read-all, read-one,
upsert-one, delete-one. Every call is an independent unit of work; there is
no multi-record transaction, so callers sequence related writes themselves.
"""
from abc import ABC, abstractmethod
from typing import List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError

from core.db import get_db_session_ctx
from models.partner import Partner
from referral_system.errors import GraphStoreError, RecordNotFoundError
from referral_system.graph.node import GraphNode

logger = logging.getLogger(__name__)


class GraphStore(ABC):
    """Record access contract used by repair and rename services."""

    @abstractmethod
    def listAll(self) -> List[GraphNode]:
        """Full snapshot of all records (duplicates included)."""

    @abstractmethod
    def getOne(self, nodeId: str) -> Optional[GraphNode]:
        """Node by id or None."""

    @abstractmethod
    def put(self, nodeId: str, node: GraphNode) -> None:
        """Upsert node data under nodeId. Raises GraphStoreError."""

    @abstractmethod
    def delete(self, nodeId: str) -> None:
        """Remove the record under nodeId. Raises GraphStoreError."""


def partner_to_node(partner: Partner) -> GraphNode:
    """Convert a Partner row into a detached GraphNode."""
    team = partner.team if isinstance(partner.team, list) else []
    return GraphNode(
        id=partner.partnerId,
        sponsorId=partner.sponsorId or None,
        team=[str(x) for x in team if x is not None],
        referralCode=partner.referralCode,
        invitationCode=partner.invitationCode or None,
        depth=partner.depth or 0,
        firstname=partner.firstname,
        surname=partner.surname,
        isAdmin=bool(partner.isAdmin),
        registeredAt=partner.registeredAt,
        recordKey=partner.recordID,
        balanceActive=partner.balanceActive,
        balancePassive=partner.balancePassive,
        createdAt=partner.createdAt,
    )


class SqlGraphStore(GraphStore):
    """
    GraphStore over the `partners` table.

    Each operation opens its own session and commits on exit.
    When several records share a partnerId, getOne/put/delete address the
    oldest one (lowest recordID); listAll returns all of them.
    Balances and createdAt are written only when put creates the row.
    """

    def __init__(self, session_factory=None):
        self.session_factory = session_factory

    def _first(self, session, nodeId: str) -> Optional[Partner]:
        return session.query(Partner).filter(
            Partner.partnerId == nodeId
        ).order_by(Partner.recordID).first()

    def listAll(self) -> List[GraphNode]:
        try:
            with get_db_session_ctx(self.session_factory) as session:
                partners = session.query(Partner).order_by(Partner.recordID).all()
                nodes = [partner_to_node(p) for p in partners]
        except SQLAlchemyError as e:
            raise GraphStoreError(f"Failed to list partners: {e}") from e

        logger.debug(f"Loaded graph snapshot: {len(nodes)} records")
        return nodes

    def getOne(self, nodeId: str) -> Optional[GraphNode]:
        if not nodeId:
            return None
        try:
            with get_db_session_ctx(self.session_factory) as session:
                partner = self._first(session, nodeId)
                return partner_to_node(partner) if partner else None
        except SQLAlchemyError as e:
            raise GraphStoreError(f"Failed to read partner {nodeId}: {e}") from e

    def put(self, nodeId: str, node: GraphNode) -> None:
        if not nodeId:
            raise GraphStoreError("Cannot write a node without an id")
        try:
            with get_db_session_ctx(self.session_factory) as session:
                partner = self._first(session, nodeId)
                created = partner is None
                if created:
                    partner = Partner(partnerId=nodeId)
                    # a moved record keeps its money and creation time
                    if node.balanceActive is not None:
                        partner.balanceActive = node.balanceActive
                    if node.balancePassive is not None:
                        partner.balancePassive = node.balancePassive
                    if node.createdAt is not None:
                        partner.createdAt = node.createdAt
                    session.add(partner)

                partner.sponsorId = node.sponsorId
                # New list object so the JSON column is flagged dirty
                partner.team = list(node.team or [])
                partner.referralCode = node.referralCode
                partner.invitationCode = node.invitationCode
                partner.depth = node.depth
                partner.firstname = node.firstname
                partner.surname = node.surname
                partner.isAdmin = node.isAdmin
                partner.registeredAt = node.registeredAt
        except SQLAlchemyError as e:
            raise GraphStoreError(f"Failed to write partner {nodeId}: {e}") from e

        logger.debug(f"{'Created' if created else 'Updated'} partner {nodeId}")

    def delete(self, nodeId: str) -> None:
        try:
            with get_db_session_ctx(self.session_factory) as session:
                partner = self._first(session, nodeId)
                if partner is None:
                    raise RecordNotFoundError(nodeId)
                session.delete(partner)
        except SQLAlchemyError as e:
            raise GraphStoreError(f"Failed to delete partner {nodeId}: {e}") from e

        logger.debug(f"Deleted partner {nodeId}")
