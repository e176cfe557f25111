"""
Fused Account Aggregate

The unit of resolution state: which source accounts belong to one real-world
person, whether they are confirmed linked to the canonical identity, review
and decision status, attribute views and a bounded audit trail.

An aggregate is built once per pass by one of four factories and then
enriched by layers in a fixed order: identity, managed accounts, decisions.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional, Set

from ..config import FusionConfig
from ..errors import CollaboratorError, InvariantViolationError
from .attribute_bag import AttributeBag
from .audit_history import AuditHistory
from .models import (
    ALLOWED_TRANSITIONS,
    CORRELATED_ACTION,
    REVIEWER_ACTION_PREFIX,
    AccountKind,
    AttributeValue,
    Candidate,
    Decision,
    FusedAccountState,
    IdentityRecord,
    ResolutionState,
    SourceAccount,
    StatusFlag,
)

logger = logging.getLogger(__name__)

# Flags computed from refs; never stored
DERIVED_STATUSES = {StatusFlag.UNCORRELATED, StatusFlag.ORPHAN}


@dataclass
class PendingOperation:
    """An outstanding asynchronous task owned by one aggregate."""

    description: str
    task: "asyncio.Future[Any]"
    on_success: Optional[Callable[[Any], None]] = None


class AccountPool:
    """Source accounts not yet claimed by any aggregate during a pass."""

    def __init__(self, accounts: Iterable[SourceAccount] = ()):
        self._accounts: Dict[str, SourceAccount] = {}
        self._by_identity: Dict[str, Set[str]] = {}
        for account in accounts:
            self._accounts[account.id] = account
            if account.identity_link:
                self._by_identity.setdefault(account.identity_link, set()).add(account.id)

    def claim(self, account_id: str) -> Optional[SourceAccount]:
        account = self._accounts.pop(account_id, None)
        if account is not None and account.identity_link:
            self._by_identity.get(account.identity_link, set()).discard(account_id)
        return account

    def claim_linked(self, identity_id: str) -> List[SourceAccount]:
        """Claim every account the source already links to ``identity_id``."""
        ids = sorted(self._by_identity.pop(identity_id, set()))
        return [self._accounts.pop(account_id) for account_id in ids if account_id in self._accounts]

    def remaining(self) -> List[SourceAccount]:
        return [self._accounts[key] for key in sorted(self._accounts)]

    def __contains__(self, account_id: str) -> bool:
        return account_id in self._accounts

    def __len__(self) -> int:
        return len(self._accounts)


class FusedAccount:
    """Aggregate of the source accounts believed to be one person."""

    def __init__(
        self,
        fused_id: str,
        kind: AccountKind,
        config: FusionConfig,
        name: Optional[str] = None,
    ):
        self.fused_id = fused_id
        self._kind = kind
        self.config = config
        self.name = name

        self.identity_link: Optional[str] = None
        self._account_refs: Dict[str, None] = {}
        self._missing_refs: Set[str] = set()
        self._expected_refs: Set[str] = set()
        self._previously_correlated: Set[str] = set()
        self._statuses: Set[StatusFlag] = set()
        self.actions: Set[str] = set()
        self.reviews: Set[str] = set()
        self.sources: Set[str] = set()
        self.attribute_bag = AttributeBag()
        self.matches: List[Candidate] = []
        self.history = AuditHistory(limit=config.history_limit)
        self.pending_operations: List[PendingOperation] = []
        self.applied_decisions: Set[str] = set()
        self.state: Optional[ResolutionState] = None
        self.disabled = False
        self.modified: Optional[datetime] = None
        self.accounts: Dict[str, SourceAccount] = {}

    def __repr__(self) -> str:
        return f"FusedAccount(id={self.fused_id!r}, kind={self._kind.value}, link={self.identity_link!r})"

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @classmethod
    def from_fused_record(cls, config: FusionConfig, record: FusedAccountState) -> "FusedAccount":
        """Rehydrate an aggregate persisted by a previous pass."""
        fused = cls(record.fused_id, AccountKind.FUSED, config, name=record.name)
        fused.identity_link = record.identity_link
        fused._expected_refs = set(record.accounts)
        fused._previously_correlated = set(record.accounts) - set(record.missing_accounts)
        for raw in record.statuses:
            try:
                flag = StatusFlag(raw)
            except ValueError:
                logger.warning(f"Ignoring unknown status '{raw}' on {record.fused_id}")
                continue
            if flag not in DERIVED_STATUSES:
                fused._statuses.add(flag)
        fused.actions = set(record.actions)
        fused.reviews = set(record.reviews)
        fused.sources = set(record.sources)
        fused.attribute_bag.set_previous(record.attributes)
        fused.history = AuditHistory(limit=config.history_limit, entries=record.history)
        fused.applied_decisions = set(record.applied_decisions)
        fused.disabled = record.disabled
        fused.modified = record.modified
        return fused

    @classmethod
    def from_identity(cls, config: FusionConfig, identity: IdentityRecord) -> "FusedAccount":
        """Baseline aggregate for an identity with no fused record yet."""
        fused = cls(identity.id, AccountKind.IDENTITY, config, name=identity.name)
        fused.identity_link = identity.id
        fused._statuses.add(StatusFlag.BASELINE)
        fused._expected_refs = set(identity.accounts)
        fused.attribute_bag.set_identity(identity.attributes)
        fused.disabled = identity.disabled
        fused.history.append(f"Set {identity.name} as baseline")
        return fused

    @classmethod
    def from_managed_account(cls, config: FusionConfig, account: SourceAccount) -> "FusedAccount":
        """Aggregate for an account no identity has claimed. Starts in ``new``."""
        fused = cls(account.id, AccountKind.MANAGED, config, name=account.name)
        fused.add_account(account, correlated=False)
        fused.state = ResolutionState.NEW
        fused.map_attributes()
        return fused

    @classmethod
    def from_decision(cls, config: FusionConfig, decision: Decision) -> "FusedAccount":
        """Aggregate for a reviewer's request to create a new identity."""
        fused = cls(decision.account_id, AccountKind.DECISION, config, name=decision.account_name)
        fused._expected_refs = {decision.account_id}
        return fused

    # ------------------------------------------------------------------
    # Status and refs
    # ------------------------------------------------------------------

    @property
    def kind(self) -> AccountKind:
        return self._kind

    @property
    def account_refs(self) -> FrozenSet[str]:
        return frozenset(self._account_refs)

    @property
    def missing_refs(self) -> FrozenSet[str]:
        return frozenset(self._missing_refs)

    @property
    def uncorrelated(self) -> bool:
        return bool(self._missing_refs)

    @property
    def orphan(self) -> bool:
        return not self._account_refs and StatusFlag.BASELINE not in self._statuses

    @property
    def statuses(self) -> Set[StatusFlag]:
        flags = set(self._statuses)
        if self.uncorrelated:
            flags.add(StatusFlag.UNCORRELATED)
        if self.orphan:
            flags.add(StatusFlag.ORPHAN)
        return flags

    def has_status(self, flag: StatusFlag) -> bool:
        return flag in self.statuses

    def set_status(self, flag: StatusFlag) -> None:
        if flag in DERIVED_STATUSES:
            raise InvariantViolationError(
                f"Status '{flag.value}' is derived and cannot be set", fused_id=self.fused_id
            )
        self._statuses.add(flag)

    @property
    def is_match(self) -> bool:
        return bool(self.matches)

    def changed_accounts(self) -> List[str]:
        """Members modified more than the refresh threshold after this aggregate."""
        if self.modified is None:
            return []
        threshold = self.modified + timedelta(seconds=self.config.refresh_threshold_seconds)
        return sorted(
            account.id
            for account in self.accounts.values()
            if account.modified is not None and account.modified > threshold
        )

    @property
    def needs_refresh(self) -> bool:
        return bool(self.changed_accounts())

    def refresh_attributes(self) -> List[str]:
        """Re-map attributes from changed members and record which ones."""
        changed = self.changed_accounts()
        if changed:
            self.map_attributes()
            self.history.append(f"Refreshed attributes after changes to {', '.join(changed)}")
        return changed

    def add_account(self, account: SourceAccount, correlated: bool) -> None:
        """Add a member account; uncorrelated members are tracked as missing."""
        self._account_refs[account.id] = None
        self.accounts[account.id] = account
        self.sources.add(account.source)
        self.attribute_bag.add_source_contribution(account.source, account.attributes)
        if correlated:
            self._missing_refs.discard(account.id)
        else:
            self._missing_refs.add(account.id)
            self.actions.discard(CORRELATED_ACTION)

    def expect_account(self, account_id: str) -> None:
        """Claim ``account_id`` when the managed-account layer runs."""
        self._expected_refs.add(account_id)

    def adopt_account(self, account: SourceAccount, message: str) -> None:
        """Add an account the resolver linked to this identity."""
        self.add_account(account, correlated=True)
        if not self._missing_refs:
            self.actions.add(CORRELATED_ACTION)
        self.map_attributes()
        self.history.append(message)

    def set_correlated_account(self, account_id: str) -> None:
        """Mark a missing member as linked to the identity.

        Raises:
            InvariantViolationError: The account is not a missing member
        """
        if account_id not in self._missing_refs:
            raise InvariantViolationError(
                f"Account {account_id} is not missing from {self.fused_id}",
                fused_id=self.fused_id,
            )
        self._missing_refs.discard(account_id)
        if not self._missing_refs:
            self.actions.add(CORRELATED_ACTION)

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    def add_review(self, review_ref: str) -> None:
        self.reviews.add(review_ref)
        self._statuses.add(StatusFlag.ACTIVE_REVIEWS)

    def clear_reviews(self) -> None:
        self.reviews.clear()
        self._statuses.discard(StatusFlag.ACTIVE_REVIEWS)

    def set_source_reviewer(self, source_id: str) -> None:
        self.actions.add(f"{REVIEWER_ACTION_PREFIX}{source_id}")
        self._statuses.add(StatusFlag.REVIEWER)

    def reviewer_sources(self) -> List[str]:
        return sorted(
            action[len(REVIEWER_ACTION_PREFIX):]
            for action in self.actions
            if action.startswith(REVIEWER_ACTION_PREFIX)
        )

    # ------------------------------------------------------------------
    # Layers
    # ------------------------------------------------------------------

    def add_identity_layer(self, identity: IdentityRecord) -> None:
        """Refresh the identity view from the canonical identity."""
        if self.identity_link is None:
            self.identity_link = identity.id
        elif self.identity_link != identity.id:
            raise InvariantViolationError(
                f"Identity {identity.id} does not match link {self.identity_link}",
                fused_id=self.fused_id,
            )
        self.name = identity.name
        self.disabled = identity.disabled
        self._expected_refs.update(identity.accounts)
        self.attribute_bag.set_identity(identity.attributes)

    def add_managed_account_layer(self, pool: AccountPool) -> List[str]:
        """Claim this aggregate's accounts from the pass-wide pool."""
        claimed: List[SourceAccount] = []
        for account_id in sorted(self._expected_refs):
            account = pool.claim(account_id)
            if account is not None:
                claimed.append(account)
        if self.identity_link:
            claimed.extend(pool.claim_linked(self.identity_link))

        for account in claimed:
            linked = self.identity_link is not None and account.identity_link == self.identity_link
            self.add_account(account, correlated=linked or account.id in self._previously_correlated)

        if self._missing_refs:
            self.actions.discard(CORRELATED_ACTION)
        self.map_attributes()
        return [account.id for account in claimed]

    def add_decision_layer(self, decisions: Iterable[Decision]) -> List[Decision]:
        """Apply decisions for this aggregate; returns those that changed it.

        Decisions that break an invariant are logged and skipped.
        """
        applied = []
        for decision in decisions:
            try:
                if self.apply_decision(decision):
                    applied.append(decision)
            except InvariantViolationError as error:
                logger.warning(f"Ignoring decision {decision.key}: {error.message}")
        return applied

    # ------------------------------------------------------------------
    # Resolution state
    # ------------------------------------------------------------------

    def transition(self, new_state: ResolutionState, message: str) -> None:
        """Move to ``new_state`` and record exactly one audit entry."""
        if self.state is None or new_state not in ALLOWED_TRANSITIONS[self.state]:
            current = self.state.value if self.state else "none"
            raise InvariantViolationError(
                f"Illegal transition {current} -> {new_state.value}", fused_id=self.fused_id
            )
        self.state = new_state
        self.history.append(message)

    def record_matches(self, candidates: List[Candidate]) -> None:
        """Keep the viable candidates of a completed scoring round."""
        self.matches = [c for c in candidates if c.classification is not None and c.classification.viable]

    def link_identity(self, identity_id: str) -> None:
        if self.identity_link is not None and self.identity_link != identity_id:
            raise InvariantViolationError(
                f"Already linked to {self.identity_link}", fused_id=self.fused_id
            )
        self.identity_link = identity_id

    def apply_decision(self, decision: Decision) -> bool:
        """Apply a finished human decision.

        Returns:
            False when the decision is unfinished or was already applied

        Raises:
            InvariantViolationError: The decision no longer fits this aggregate
        """
        if not decision.finished:
            return False
        if decision.key in self.applied_decisions:
            return False
        if decision.account_id not in self._account_refs:
            raise InvariantViolationError(
                f"Account {decision.account_id} is not a member", fused_id=self.fused_id
            )

        submitter = decision.submitter.name
        if decision.new_identity:
            self._statuses.add(StatusFlag.MANUAL)
            message = f"Created by {submitter} from {decision.account_label}"
        else:
            if decision.account_id not in self._missing_refs:
                raise InvariantViolationError(
                    f"Account {decision.account_id} is no longer missing", fused_id=self.fused_id
                )
            self.link_identity(decision.identity_link)
            self._statuses.add(StatusFlag.AUTHORIZED)
            self._statuses.discard(StatusFlag.UNMATCHED)
            self.set_correlated_account(decision.account_id)
            message = f"{decision.account_label} authorized by {submitter}"

        self.clear_reviews()
        self.applied_decisions.add(decision.key)
        if self.state in (ResolutionState.PENDING_REVIEW, ResolutionState.NEW_IDENTITY):
            self.transition(ResolutionState.FINALIZED, message)
        else:
            self.history.append(message)
        return True

    # ------------------------------------------------------------------
    # Pending operations
    # ------------------------------------------------------------------

    def add_pending_operation(
        self,
        description: str,
        operation: Awaitable[Any],
        on_success: Optional[Callable[[Any], None]] = None,
    ) -> PendingOperation:
        """Schedule an asynchronous task; results apply when the pass drains."""
        pending = PendingOperation(description, asyncio.ensure_future(operation), on_success)
        self.pending_operations.append(pending)
        return pending

    async def resolve_pending_operations(self) -> List[CollaboratorError]:
        """Await every outstanding task and apply successful results in order.

        Failed tasks are logged and returned; they never change state.
        """
        pending, self.pending_operations = self.pending_operations, []
        if not pending:
            return []

        results = await asyncio.gather(*(op.task for op in pending), return_exceptions=True)
        failures = []
        for operation, result in zip(pending, results):
            if isinstance(result, BaseException):
                logger.warning(
                    f"Pending operation '{operation.description}' on {self.fused_id} failed: {result}"
                )
                failures.append(
                    CollaboratorError(
                        f"{operation.description} failed: {result}",
                        collaborator=operation.description,
                        cause=result if isinstance(result, Exception) else None,
                    )
                )
            elif operation.on_success is not None:
                operation.on_success(result)
        return failures

    # ------------------------------------------------------------------
    # Attributes and output
    # ------------------------------------------------------------------

    @property
    def attributes(self) -> Dict[str, AttributeValue]:
        return self.attribute_bag.current

    def map_attributes(self) -> Dict[str, AttributeValue]:
        return self.attribute_bag.map_attributes(
            self.config.attribute_maps, self.config.sources, self.config.attribute_merge
        )

    def as_candidate(self) -> Candidate:
        """This aggregate as a candidate identity for unresolved accounts."""
        if self.identity_link is None:
            raise InvariantViolationError("Unlinked aggregate cannot be a candidate", fused_id=self.fused_id)
        return Candidate(id=self.identity_link, name=self.name or self.identity_link, attributes=dict(self.attributes))

    def to_state(self) -> FusedAccountState:
        """Persisted shape handed back to the caller."""
        return FusedAccountState(
            fused_id=self.fused_id,
            kind=self._kind,
            name=self.name,
            identity_link=self.identity_link,
            accounts=list(self._account_refs),
            missing_accounts=sorted(self._missing_refs),
            statuses=sorted(flag.value for flag in self.statuses),
            actions=sorted(self.actions),
            reviews=sorted(self.reviews),
            sources=sorted(self.sources),
            attributes=dict(self.attributes),
            matches=[candidate.to_dict() for candidate in self.matches],
            history=self.history.entries,
            applied_decisions=sorted(self.applied_decisions),
            disabled=self.disabled,
            modified=self.modified,
        )
