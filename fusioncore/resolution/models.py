"""
Resolution Data Models

Accounts, identities, candidates, scores and decisions exchanged between the
scorer, the matcher, the fused account aggregate and the decision resolver.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Tagged attribute value: single string, multi-valued list or boolean flag
AttributeValue = Union[str, List[str], bool]


def coerce_attribute_value(raw: Any) -> Optional[AttributeValue]:
    """Convert a raw source value into an attribute value.

    Returns None for missing values and for shapes an attribute cannot hold.
    """
    if raw is None:
        return None
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        return raw
    if isinstance(raw, (int, float)):
        return str(raw)
    if isinstance(raw, (list, tuple, set)):
        items = [str(item) for item in raw if item is not None and item != ""]
        return items
    logger.warning(f"Unsupported attribute value of type {type(raw).__name__} ignored")
    return None


class AccountKind(str, Enum):
    """How a fused account came to exist. Fixed at creation."""

    FUSED = "fused"
    IDENTITY = "identity"
    MANAGED = "managed"
    DECISION = "decision"


class StatusFlag(str, Enum):
    """Status flags carried by a fused account."""

    UNCORRELATED = "uncorrelated"
    ORPHAN = "orphan"
    BASELINE = "baseline"
    UNMATCHED = "unmatched"
    MANUAL = "manual"
    AUTHORIZED = "authorized"
    ACTIVE_REVIEWS = "activeReviews"
    REVIEWER = "reviewer"


CORRELATED_ACTION = "correlated"
REVIEWER_ACTION_PREFIX = "reviewer:"


class Classification(str, Enum):
    """Outcome of evaluating one candidate against the matching policies."""

    DISQUALIFIED = "disqualified"
    MATCHING = "matching"
    AMBIGUOUS = "ambiguous"
    NON_MATCHING = "non-matching"

    @property
    def viable(self) -> bool:
        return self in (Classification.MATCHING, Classification.AMBIGUOUS)


class ResolutionState(str, Enum):
    """Lifecycle of an unresolved account."""

    NEW = "new"
    SCORED = "scored"
    AUTO_LINKED = "auto-linked"
    PENDING_REVIEW = "pending-review"
    NEW_IDENTITY = "new-identity"
    FINALIZED = "finalized"


ALLOWED_TRANSITIONS = {
    ResolutionState.NEW: {ResolutionState.SCORED},
    ResolutionState.SCORED: {
        ResolutionState.AUTO_LINKED,
        ResolutionState.PENDING_REVIEW,
        ResolutionState.NEW_IDENTITY,
    },
    ResolutionState.AUTO_LINKED: {ResolutionState.FINALIZED},
    ResolutionState.PENDING_REVIEW: {ResolutionState.FINALIZED},
    ResolutionState.NEW_IDENTITY: {ResolutionState.FINALIZED},
    ResolutionState.FINALIZED: set(),
}


@dataclass(frozen=True)
class SourceAccount:
    """A raw account observed in one source system. Read-only input."""

    id: str
    source: str
    name: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    identity_link: Optional[str] = None
    disabled: bool = False
    modified: Optional[datetime] = None

    @property
    def label(self) -> str:
        return f"{self.name} [{self.source}]"


@dataclass(frozen=True)
class IdentityRecord:
    """A canonical identity known to the account source."""

    id: str
    name: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    accounts: List[str] = field(default_factory=list)
    disabled: bool = False


@dataclass
class ScoreResult:
    """Score of one attribute of an account against one candidate."""

    attribute: str
    algorithm: str
    value: int
    threshold: float
    mandatory: bool = False
    is_match: bool = False
    comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attribute": self.attribute,
            "algorithm": self.algorithm,
            "score": self.value,
            "threshold": self.threshold,
            "mandatory": self.mandatory,
            "is_match": self.is_match,
            "comment": self.comment,
        }


@dataclass
class Candidate:
    """An identity proposed as the owner of an unresolved account."""

    id: str
    name: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    scores: List[ScoreResult] = field(default_factory=list)
    classification: Optional[Classification] = None

    @property
    def mean_score(self) -> float:
        if not self.scores:
            return 0.0
        return sum(score.value for score in self.scores) / len(self.scores)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity_id": self.id,
            "name": self.name,
            "classification": self.classification.value if self.classification else None,
            "mean_score": round(self.mean_score, 2),
            "scores": [score.to_dict() for score in self.scores],
        }


@dataclass(frozen=True)
class Submitter:
    """Person who answered a review."""

    id: str
    name: str
    email: Optional[str] = None


@dataclass(frozen=True)
class Decision:
    """A human answer to a pending review."""

    submitter: Submitter
    account_id: str
    account_name: str
    source: str
    new_identity: bool = False
    identity_link: Optional[str] = None
    comments: Optional[str] = None
    finished: bool = True
    review_ref: Optional[str] = None

    @property
    def key(self) -> str:
        """Stable key used to recognise a decision that was already applied."""
        target = "new-identity" if self.new_identity else self.identity_link
        return f"{self.submitter.id}:{self.account_id}:{target}"

    @property
    def account_label(self) -> str:
        return f"{self.account_name} [{self.source}]"


@dataclass
class ReviewRequest:
    """Ranked candidates handed to the review collaborator."""

    fused_id: str
    account: SourceAccount
    candidates: List[Candidate]
    reviewers: List[str] = field(default_factory=list)


class FusedAccountState(BaseModel):
    """Persisted shape of a fused account, round-tripped between passes."""

    fused_id: str
    kind: AccountKind = AccountKind.FUSED
    name: Optional[str] = None
    identity_link: Optional[str] = None
    accounts: List[str] = Field(default_factory=list)
    missing_accounts: List[str] = Field(default_factory=list)
    statuses: List[str] = Field(default_factory=list)
    actions: List[str] = Field(default_factory=list)
    reviews: List[str] = Field(default_factory=list)
    sources: List[str] = Field(default_factory=list)
    attributes: Dict[str, AttributeValue] = Field(default_factory=dict)
    matches: List[Dict[str, Any]] = Field(default_factory=list)
    history: List[str] = Field(default_factory=list)
    applied_decisions: List[str] = Field(default_factory=list)
    disabled: bool = False
    modified: Optional[datetime] = None
