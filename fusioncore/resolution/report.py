"""
Fusion Report

Summary of one resolution pass: which accounts were flagged as potential
duplicates of existing identities, with the per-attribute scores behind each
candidate, plus pass totals.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from .models import AttributeValue, Candidate, ScoreResult


def stringify_scores(scores: Sequence[ScoreResult]) -> str:
    """Readable score list, e.g. ``name (85), email (100)``."""
    return ", ".join(f"{score.attribute} ({score.value})" for score in scores)


def format_score_compact(scores: Sequence[ScoreResult]) -> str:
    """Compact score list, e.g. ``name:85, email:100``."""
    return ", ".join(f"{score.attribute}:{score.value}" for score in scores)


@dataclass
class ReportAccount:
    """One flagged account and the identities it may duplicate."""

    account_id: str
    account_name: str
    source: str
    state: str
    attributes: Dict[str, AttributeValue] = field(default_factory=dict)
    matches: List[Candidate] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "account_name": self.account_name,
            "source": self.source,
            "state": self.state,
            "attributes": self.attributes,
            "matches": [
                {
                    "identity_id": match.id,
                    "identity_name": match.name,
                    "classification": match.classification.value if match.classification else None,
                    "summary": stringify_scores(match.scores),
                    "scores": [score.to_dict() for score in match.scores],
                }
                for match in self.matches
            ],
        }


@dataclass
class FusionReport:
    """Results of one resolution pass."""

    total_accounts: int
    accounts: List[ReportAccount] = field(default_factory=list)
    auto_linked: int = 0
    new_identities: int = 0
    decisions_applied: int = 0
    errors: List[str] = field(default_factory=list)
    report_date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def potential_duplicates(self) -> int:
        return len(self.accounts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "report_date": self.report_date.isoformat(),
            "total_accounts": self.total_accounts,
            "potential_duplicates": self.potential_duplicates,
            "auto_linked": self.auto_linked,
            "new_identities": self.new_identities,
            "decisions_applied": self.decisions_applied,
            "errors": list(self.errors),
            "accounts": [account.to_dict() for account in self.accounts],
        }


def pick_attributes(
    attributes: Dict[str, AttributeValue], names: Optional[Sequence[str]]
) -> Dict[str, AttributeValue]:
    if not names:
        return {}
    return {name: attributes[name] for name in names if name in attributes}
