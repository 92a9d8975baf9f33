# referral_system/errors.py
"""
Exceptions raised by the effectful side of the referral system.

Pure computations (commissions, upline, analysis) never raise on bad graph
data; only the store adapter raises, and the repair/rename services catch
these per item and report them.
"""


class ReferralSystemError(Exception):
    """Base exception for the referral system."""
    pass


class GraphStoreError(ReferralSystemError):
    """Store read/write failed."""
    pass


class RecordNotFoundError(GraphStoreError):
    """Record addressed by id does not exist."""

    def __init__(self, node_id: str):
        super().__init__(f"Node {node_id} not found")
        self.nodeId = node_id
