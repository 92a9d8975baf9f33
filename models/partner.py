"""
Partner model - one node of the referral graph.

partnerId is the business key but is deliberately NOT unique at the database
level: duplicate identities are a corruption the integrity analyzer has to be
able to see, so the table keys rows by a surrogate recordID instead.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, Boolean, DateTime, JSON
from models.base import Base, AuditMixin


class Partner(Base, AuditMixin):
    __tablename__ = 'partners'

    # Surrogate key (store record key)
    recordID = Column(Integer, primary_key=True, autoincrement=True)

    # Graph identity and edges
    partnerId = Column(String, nullable=False, index=True)
    sponsorId = Column(String, nullable=True, index=True)  # parent edge
    team = Column(JSON, nullable=False, default=list)  # ordered child ids (redundant edge)

    # Codes
    referralCode = Column(String, nullable=True, index=True)  # shared with registrants
    invitationCode = Column(String, nullable=True)  # supplied at own registration

    depth = Column(Integer, default=0)  # advisory, not authoritative

    # Descriptive
    firstname = Column(String, nullable=True)
    surname = Column(String, nullable=True)
    isAdmin = Column(Boolean, default=False)
    registeredAt = Column(DateTime, nullable=True)

    # Balances - settled outside the graph engine
    balanceActive = Column(DECIMAL(12, 2), default=0)
    balancePassive = Column(DECIMAL(12, 2), default=0)

    def __repr__(self):
        return f"<Partner(partnerId={self.partnerId}, sponsorId={self.sponsorId}, team={self.team})>"
