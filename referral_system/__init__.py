# referral_system/__init__.py
"""
Referral System - referral graph, commission distribution and graph
integrity/repair engine.
"""

# Graph
from referral_system.graph.node import GraphNode
from referral_system.graph.store import GraphStore, SqlGraphStore

# Commissions
from referral_system.services.commission_service import (
    CommissionService,
    CommissionTable,
    OrderCalculation,
    Payout,
    calcOrder,
    incomePotential,
    resolveCommissions,
)
from referral_system.utils.chain_walker import ChainWalker, findUpline

# Integrity and repair
from referral_system.services.integrity_service import (
    IntegrityService,
    Issue,
    IssueType,
    Severity,
    analyze,
    summarize,
)
from referral_system.services.sponsor_resolver import (
    Confidence,
    Suggestion,
    analyzeOrphans,
    suggestSponsor,
)
from referral_system.services.repair_service import (
    BatchResult,
    FieldChange,
    FixPlan,
    FixResult,
    FixStatus,
    RepairService,
)
from referral_system.services.rename_service import RenameResult, RenameService

# Errors
from referral_system.errors import GraphStoreError, RecordNotFoundError, ReferralSystemError

__all__ = [
    # Graph
    'GraphNode',
    'GraphStore',
    'SqlGraphStore',

    # Commissions
    'CommissionService',
    'CommissionTable',
    'OrderCalculation',
    'Payout',
    'calcOrder',
    'incomePotential',
    'resolveCommissions',
    'ChainWalker',
    'findUpline',

    # Integrity
    'IntegrityService',
    'Issue',
    'IssueType',
    'Severity',
    'analyze',
    'summarize',
    'Confidence',
    'Suggestion',
    'analyzeOrphans',
    'suggestSponsor',

    # Repair
    'BatchResult',
    'FieldChange',
    'FixPlan',
    'FixResult',
    'FixStatus',
    'RepairService',
    'RenameResult',
    'RenameService',

    # Errors
    'GraphStoreError',
    'RecordNotFoundError',
    'ReferralSystemError',
]
