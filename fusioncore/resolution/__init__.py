"""
Identity Fusion Resolution Engine

Resolves raw accounts observed across many source systems into one fused
identity per real-world person, linking automatically when the evidence is
clear and escalating to human review when it is not.

Components:
- Similarity Scoring: LIG3, Jaro-Winkler, Dice, Double Metaphone, name matcher, exact
- Candidate Matcher: Policy-driven classification and ranking of candidate identities
- Fused Account: The aggregate holding member accounts, status and audit history
- Attribute Bag: Current, previous, identity and per-source attribute views
- Decision Resolver: The resolution state machine and the full resolution pass
- Fusion Report: Accounts flagged as potential duplicates with their scores

Usage:
    from fusioncore.config import ConfigManager
    from fusioncore.resolution import DecisionResolver, InMemoryAccountSource

    resolver = DecisionResolver(ConfigManager("fusion.json").load())
    result = await resolver.resolve_pass(InMemoryAccountSource(accounts, identities))
"""

from .models import (
    AccountKind,
    Candidate,
    Classification,
    Decision,
    FusedAccountState,
    IdentityRecord,
    ResolutionState,
    ReviewRequest,
    ScoreResult,
    SourceAccount,
    StatusFlag,
    Submitter,
)
from .lig3 import lig3_similarity, weighted_distance
from .similarity_scoring import SimilarityScorer, SimilarityAlgorithm
from .candidate_matcher import CandidateMatcher
from .attribute_bag import AttributeBag, attr_concat, attr_split
from .audit_history import AuditHistory
from .fusion_account import AccountPool, FusedAccount, PendingOperation
from .collaborators import (
    AccountSource,
    Correlator,
    InMemoryAccountSource,
    NotificationCollaborator,
    ReviewCollaborator,
)
from .decision_resolver import DecisionResolver, PassResult, ResolutionOutcome
from .report import FusionReport, ReportAccount, format_score_compact, stringify_scores

__all__ = [
    # Models
    "AccountKind",
    "Candidate",
    "Classification",
    "Decision",
    "FusedAccountState",
    "IdentityRecord",
    "ResolutionState",
    "ReviewRequest",
    "ScoreResult",
    "SourceAccount",
    "StatusFlag",
    "Submitter",
    # Scoring
    "lig3_similarity",
    "weighted_distance",
    "SimilarityScorer",
    "SimilarityAlgorithm",
    "CandidateMatcher",
    # Aggregate
    "AttributeBag",
    "attr_concat",
    "attr_split",
    "AuditHistory",
    "AccountPool",
    "FusedAccount",
    "PendingOperation",
    # Collaborators
    "AccountSource",
    "Correlator",
    "InMemoryAccountSource",
    "NotificationCollaborator",
    "ReviewCollaborator",
    # Resolution
    "DecisionResolver",
    "PassResult",
    "ResolutionOutcome",
    # Reporting
    "FusionReport",
    "ReportAccount",
    "format_score_compact",
    "stringify_scores",
]

__version__ = "1.0.0"
