"""Reading pass inputs from and writing pass outputs to JSON files."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .collaborators import InMemoryAccountSource
from .decision_resolver import PassResult
from .models import Decision, FusedAccountState, IdentityRecord, SourceAccount, Submitter


@dataclass
class Snapshot:
    """Everything one pass needs, as read from disk."""

    accounts: List[SourceAccount] = field(default_factory=list)
    identities: List[IdentityRecord] = field(default_factory=list)
    records: List[FusedAccountState] = field(default_factory=list)
    decisions: List[Decision] = field(default_factory=list)

    def source(self) -> InMemoryAccountSource:
        return InMemoryAccountSource(self.accounts, self.identities)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def account_from_dict(data: Dict[str, Any]) -> SourceAccount:
    return SourceAccount(
        id=str(data["id"]),
        source=data["source"],
        name=data.get("name") or str(data["id"]),
        attributes=data.get("attributes", {}),
        identity_link=data.get("identity_link"),
        disabled=bool(data.get("disabled", False)),
        modified=_parse_datetime(data.get("modified")),
    )


def identity_from_dict(data: Dict[str, Any]) -> IdentityRecord:
    return IdentityRecord(
        id=str(data["id"]),
        name=data.get("name") or str(data["id"]),
        attributes=data.get("attributes", {}),
        accounts=[str(a) for a in data.get("accounts", [])],
        disabled=bool(data.get("disabled", False)),
    )


def decision_from_dict(data: Dict[str, Any]) -> Decision:
    submitter = data["submitter"]
    return Decision(
        submitter=Submitter(
            id=str(submitter["id"]),
            name=submitter.get("name", str(submitter["id"])),
            email=submitter.get("email"),
        ),
        account_id=str(data["account_id"]),
        account_name=data.get("account_name", str(data["account_id"])),
        source=data["source"],
        new_identity=bool(data.get("new_identity", False)),
        identity_link=data.get("identity_link"),
        comments=data.get("comments"),
        finished=bool(data.get("finished", True)),
        review_ref=data.get("review_ref"),
    )


def load_snapshot(path: Union[str, Path]) -> Snapshot:
    """Load accounts, identities, fused records and decisions from JSON."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    return Snapshot(
        accounts=[account_from_dict(item) for item in data.get("accounts", [])],
        identities=[identity_from_dict(item) for item in data.get("identities", [])],
        records=[FusedAccountState.model_validate(item) for item in data.get("fused_accounts", [])],
        decisions=[decision_from_dict(item) for item in data.get("decisions", [])],
    )


def save_pass_result(result: PassResult, path: Union[str, Path]) -> None:
    """Write persisted aggregates and the report as one JSON document."""
    payload = {
        "fused_accounts": [state.model_dump(mode="json") for state in result.states()],
        "report": result.report.to_dict() if result.report else None,
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, default=str)
