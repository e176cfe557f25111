"""
Decision Resolver

Drives every unresolved account through the resolution state machine:

    new -> scored -> {auto-linked | pending-review | new-identity} -> finalized

and applies human decisions back onto fused accounts. A full pass rebuilds
the aggregates from persisted records, baseline identities and decisions,
resolves the accounts nobody claimed, drains every pending operation at one
join point and produces a report.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from ..config import FusionConfig
from ..audit import AuditLogger
from ..errors import BaseFusionError, CollaboratorError, ConfigurationError, ErrorHandler, InvariantViolationError
from ..logging_config import Timer, log_context, log_performance
from .candidate_matcher import CandidateMatcher
from .collaborators import AccountSource, Correlator, NotificationCollaborator, ReviewCollaborator
from .fusion_account import AccountPool, FusedAccount
from .models import (
    Candidate,
    Classification,
    Decision,
    FusedAccountState,
    ResolutionState,
    ReviewRequest,
    SourceAccount,
    StatusFlag,
)
from .report import FusionReport, ReportAccount, format_score_compact, pick_attributes
from .similarity_scoring import SimilarityScorer

logger = logging.getLogger(__name__)


@dataclass
class ResolutionOutcome:
    """What happened to one unresolved account during a pass."""

    account: SourceAccount
    fused: Optional[FusedAccount]
    resolution: Optional[ResolutionState] = None
    candidates: List[Candidate] = field(default_factory=list)
    error: Optional[BaseFusionError] = None

    @property
    def review_candidates(self) -> List[Candidate]:
        return [c for c in self.candidates if c.classification is not None and c.classification.viable]


@dataclass
class PassResult:
    """Everything a resolution pass produced."""

    fused_accounts: List[FusedAccount] = field(default_factory=list)
    outcomes: List[ResolutionOutcome] = field(default_factory=list)
    report: Optional[FusionReport] = None
    errors: List[BaseFusionError] = field(default_factory=list)
    failures: List[CollaboratorError] = field(default_factory=list)
    processing_time: float = 0.0

    @property
    def pending_reviews(self) -> List[ResolutionOutcome]:
        return [o for o in self.outcomes if o.resolution == ResolutionState.PENDING_REVIEW]

    def states(self) -> List[FusedAccountState]:
        return [fused.to_state() for fused in self.fused_accounts]


class DecisionResolver:
    """
    Resolution lifecycle orchestrator.

    Configuration and collaborators are passed in explicitly. Distinct
    accounts resolve concurrently; each aggregate's asynchronous work is only
    applied when its pending operations are drained.
    """

    def __init__(
        self,
        config: FusionConfig,
        scorer: Optional[SimilarityScorer] = None,
        review: Optional[ReviewCollaborator] = None,
        notifier: Optional[NotificationCollaborator] = None,
        correlator: Optional[Correlator] = None,
        error_handler: Optional[ErrorHandler] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        """Initialize the resolver.

        Raises:
            ConfigurationError: No matching policy is configured
        """
        self.config = config
        self.matcher = CandidateMatcher(config, scorer)
        self.review = review
        self.notifier = notifier
        self.correlator = correlator
        self.audit_logger = audit_logger or AuditLogger()
        self.error_handler = error_handler or ErrorHandler(self.audit_logger)

        self.stats = {
            "accounts_resolved": 0,
            "auto_linked": 0,
            "pending_review": 0,
            "new_identities": 0,
            "decisions_applied": 0,
            "decisions_ignored": 0,
        }

    # ------------------------------------------------------------------
    # Single account
    # ------------------------------------------------------------------

    async def resolve_account(
        self,
        account: SourceAccount,
        candidates: Sequence[Candidate],
        reviewers: Sequence[str] = (),
    ) -> ResolutionOutcome:
        """Score one unresolved account and decide where it goes.

        Review requests and notifications are scheduled as pending operations
        on the returned aggregate; nothing is awaited here.

        Raises:
            ConfigurationError: A policy is unusable; fatal for this account only
        """
        fused = FusedAccount.from_managed_account(self.config, account)
        ranked = self.matcher.evaluate(fused.attributes, candidates)

        fused.record_matches(ranked)
        fused.transition(
            ResolutionState.SCORED,
            f"Scored {account.label} against {len(ranked)} candidate(s)",
        )

        viable = CandidateMatcher.viable(ranked)
        if len(viable) == 1 and viable[0].classification == Classification.MATCHING:
            self._auto_link(fused, account, viable[0])
        elif viable or (not ranked and self._wants_review_without_candidates(fused)):
            self._request_review(fused, account, viable, reviewers)
        else:
            fused.set_status(StatusFlag.UNMATCHED)
            fused.transition(ResolutionState.NEW_IDENTITY, f"Set {account.label} as unmatched")
            self.stats["new_identities"] += 1

        self.audit_logger.log_resolution(
            account.id,
            account.source,
            fused.state.value,
            identity_id=fused.identity_link,
            candidates=[{"identity_id": c.id, "mean_score": round(c.mean_score, 2)} for c in viable],
        )
        self.stats["accounts_resolved"] += 1
        return ResolutionOutcome(account, fused, fused.state, ranked)

    def _auto_link(self, fused: FusedAccount, account: SourceAccount, candidate: Candidate) -> None:
        fused.link_identity(candidate.id)
        fused.set_correlated_account(account.id)
        fused.transition(
            ResolutionState.AUTO_LINKED,
            f"Auto-linked {account.label} to {candidate.name} ({format_score_compact(candidate.scores)})",
        )
        self.stats["auto_linked"] += 1
        logger.info(f"🔗 Auto-linked {account.label} to identity {candidate.id}")

    def _wants_review_without_candidates(self, fused: FusedAccount) -> bool:
        if not self.config.review_without_candidates:
            return False
        return any(fused.attributes.get(name) for name in self.config.policy_attributes())

    def _request_review(
        self,
        fused: FusedAccount,
        account: SourceAccount,
        candidates: List[Candidate],
        reviewers: Sequence[str],
    ) -> None:
        fused.set_status(StatusFlag.ACTIVE_REVIEWS)
        fused.transition(
            ResolutionState.PENDING_REVIEW,
            f"Sent {account.label} for review with {len(candidates)} candidate(s)",
        )
        request = ReviewRequest(fused.fused_id, account, list(candidates), list(reviewers))

        def attach_review(review_ref: Optional[str]) -> None:
            if review_ref:
                fused.add_review(review_ref)

        if self.review is not None:
            fused.add_pending_operation(
                f"review request for {account.id}", self.review.request_review(request), attach_review
            )
        if self.notifier is not None:
            fused.add_pending_operation(
                f"review notification for {account.id}", self.notifier.notify_pending_review(request)
            )
        self.stats["pending_review"] += 1
        logger.info(f"👀 {account.label} needs review ({len(candidates)} candidate(s))")

    def finalize(self, fused: FusedAccount) -> None:
        """Close out an auto-linked or new-identity account after draining."""
        if fused.state in (ResolutionState.AUTO_LINKED, ResolutionState.NEW_IDENTITY):
            fused.transition(ResolutionState.FINALIZED, f"Resolution finalized as {fused.state.value}")

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def apply_decision(self, fused: FusedAccount, decision: Decision) -> bool:
        """Apply a human decision to an aggregate.

        Idempotent: a decision already applied, or not finished yet, changes
        nothing. A decision that no longer fits the aggregate is logged and
        ignored.
        """
        try:
            applied = fused.apply_decision(decision)
        except InvariantViolationError as error:
            with self.error_handler.error_context(
                operation="apply_decision", account_id=decision.account_id, identity_id=decision.identity_link
            ):
                self.error_handler.handle_error(error, reraise=False)
            self.audit_logger.log_decision(
                decision.key, fused.fused_id, decision.submitter.id, applied=False, reason=error.message
            )
            self.stats["decisions_ignored"] += 1
            return False

        if applied:
            self.audit_logger.log_decision(decision.key, fused.fused_id, decision.submitter.id, applied=True)
            self.stats["decisions_applied"] += 1
            logger.info(f"✅ Applied decision {decision.key} to {fused.fused_id}")
        return applied

    # ------------------------------------------------------------------
    # Full pass
    # ------------------------------------------------------------------

    async def resolve_pass(
        self,
        source: AccountSource,
        records: Iterable[FusedAccountState] = (),
        decisions: Iterable[Decision] = (),
    ) -> PassResult:
        """Run one resolution pass over everything the source knows about."""
        result = PassResult()
        decisions = list(decisions)
        with Timer() as timer:
            pool = AccountPool(source.list_accounts())
            total_accounts = len(pool)

            aggregates, by_identity = self._build_identity_aggregates(source, records)
            self._assign_global_reviewer(by_identity)
            decision_targets = self._route_decisions(decisions, aggregates, by_identity, result)
            self._attach_unfinished_reviews(decisions, by_identity)

            # Accounts a decision points at are claimed before anything else
            ordered = list(decision_targets.keys()) + [
                fused for key, fused in sorted(aggregates.items()) if fused not in decision_targets
            ]
            for fused in ordered:
                fused.add_managed_account_layer(pool)
                fused.refresh_attributes()
            for fused, fused_decisions in decision_targets.items():
                for decision in fused_decisions:
                    self.apply_decision(fused, decision)

            candidates = [
                by_identity[key].as_candidate()
                for key in sorted(by_identity)
                if not by_identity[key].disabled
            ]
            source.prefetch([candidate.id for candidate in candidates])
            reviewers = self._reviewers_by_source(aggregates.values())

            remaining = pool.remaining()
            logger.info(
                f"🔍 Resolving {len(remaining)} unclaimed account(s) against {len(candidates)} identities"
            )
            outcomes = await asyncio.gather(
                *(
                    self._resolve_isolated(account, candidates, reviewers.get(account.source, []))
                    for account in remaining
                )
            )
            result.outcomes = list(outcomes)
            result.errors.extend(o.error for o in outcomes if o.error is not None)

            for outcome in outcomes:
                if outcome.resolution == ResolutionState.AUTO_LINKED:
                    linked = outcome.review_candidates[0]
                    by_identity[linked.id].adopt_account(
                        outcome.account,
                        f"Auto-linked {outcome.account.label} ({format_score_compact(linked.scores)})",
                    )

            if self.config.correlate_on_resolution and self.correlator is not None:
                self._schedule_correlations(aggregates.values())

            active = list(aggregates.values()) + [o.fused for o in outcomes if o.fused is not None]
            for failures in await asyncio.gather(*(f.resolve_pending_operations() for f in active)):
                for failure in failures:
                    self.error_handler.handle_error(failure, reraise=False)
                    result.failures.append(failure)

            for outcome in outcomes:
                if outcome.fused is not None:
                    self.finalize(outcome.fused)

            result.fused_accounts = self._persistable(aggregates.values(), outcomes)
            result.report = self._build_report(total_accounts, outcomes, result)

        result.processing_time = timer.duration_ms / 1000.0
        log_performance(
            __name__,
            "resolve_pass",
            timer.duration_ms,
            accounts=total_accounts,
            pending_reviews=len(result.pending_reviews),
        )
        await self._notify_report(result.report)
        return result

    def _build_identity_aggregates(self, source: AccountSource, records: Iterable[FusedAccountState]):
        aggregates: Dict[str, FusedAccount] = {}
        by_identity: Dict[str, FusedAccount] = {}
        for record in records:
            fused = FusedAccount.from_fused_record(self.config, record)
            aggregates[fused.fused_id] = fused
            if fused.identity_link:
                by_identity[fused.identity_link] = fused

        for identity in source.list_identities():
            fused = by_identity.get(identity.id)
            if fused is None:
                fused = FusedAccount.from_identity(self.config, identity)
                aggregates[fused.fused_id] = fused
                by_identity[identity.id] = fused
            fused.add_identity_layer(identity)
        return aggregates, by_identity

    def _assign_global_reviewer(self, by_identity: Dict[str, FusedAccount]) -> None:
        owner = self.config.global_reviewer
        if owner is None:
            return
        reviewer = by_identity.get(owner)
        if reviewer is None:
            logger.warning(f"Global reviewer {owner} is not a known identity")
            return
        for source_id in self.config.sources:
            reviewer.set_source_reviewer(source_id)

    def _route_decisions(
        self,
        decisions: Sequence[Decision],
        aggregates: Dict[str, FusedAccount],
        by_identity: Dict[str, FusedAccount],
        result: PassResult,
    ) -> "OrderedDict[FusedAccount, List[Decision]]":
        applied = set()
        for fused in aggregates.values():
            applied.update(fused.applied_decisions)

        targets: "OrderedDict[FusedAccount, List[Decision]]" = OrderedDict()
        for decision in decisions:
            if not decision.finished:
                continue
            if decision.key in applied:
                logger.debug(f"Decision {decision.key} already applied")
                continue

            if decision.new_identity:
                target = aggregates.get(decision.account_id)
                if target is None or target.identity_link is not None:
                    target = FusedAccount.from_decision(self.config, decision)
                    aggregates[target.fused_id] = target
            else:
                target = by_identity.get(decision.identity_link)
                if target is None:
                    error = InvariantViolationError(
                        f"Decision {decision.key} links to unknown identity {decision.identity_link}"
                    )
                    self.error_handler.handle_error(error, reraise=False)
                    result.errors.append(error)
                    continue

            target.expect_account(decision.account_id)
            targets.setdefault(target, []).append(decision)
            applied.add(decision.key)
        return targets

    def _attach_unfinished_reviews(
        self, decisions: Sequence[Decision], by_identity: Dict[str, FusedAccount]
    ) -> None:
        for decision in decisions:
            if decision.finished or not decision.review_ref:
                continue
            reviewer = by_identity.get(decision.submitter.id)
            if reviewer is not None:
                reviewer.add_review(decision.review_ref)

    @staticmethod
    def _reviewers_by_source(aggregates: Iterable[FusedAccount]) -> Dict[str, List[str]]:
        reviewers: Dict[str, List[str]] = {}
        for fused in aggregates:
            if fused.identity_link is None:
                continue
            for source_id in fused.reviewer_sources():
                reviewers.setdefault(source_id, []).append(fused.identity_link)
        for names in reviewers.values():
            names.sort()
        return reviewers

    async def _resolve_isolated(
        self, account: SourceAccount, candidates: Sequence[Candidate], reviewers: Sequence[str]
    ) -> ResolutionOutcome:
        """Resolve one account; a configuration error stays with that account."""
        with log_context(account_id=account.id):
            try:
                return await self.resolve_account(account, candidates, reviewers)
            except ConfigurationError as error:
                with self.error_handler.error_context(operation="resolve_account", account_id=account.id):
                    self.error_handler.handle_error(error, reraise=False)
                return ResolutionOutcome(account, None, error=error)

    def _schedule_correlations(self, aggregates: Iterable[FusedAccount]) -> None:
        for fused in aggregates:
            if fused.identity_link is None:
                continue
            for account_id in sorted(fused.missing_refs):

                def mark_correlated(ok: bool, fused=fused, account_id=account_id) -> None:
                    if ok and account_id in fused.missing_refs:
                        fused.set_correlated_account(account_id)
                        fused.history.append(f"Correlated account {account_id}")

                fused.add_pending_operation(
                    f"correlate {account_id}",
                    self.correlator.correlate(fused.identity_link, account_id),
                    mark_correlated,
                )

    def _persistable(
        self, aggregates: Iterable[FusedAccount], outcomes: Sequence[ResolutionOutcome]
    ) -> List[FusedAccount]:
        """Aggregates the caller should store; pending reviews are rescored next pass."""
        keep = [f for f in aggregates if not (self.config.delete_empty and f.orphan)]
        keep.extend(
            o.fused
            for o in outcomes
            if o.fused is not None and o.resolution == ResolutionState.NEW_IDENTITY
        )
        written = datetime.now()
        for fused in keep:
            fused.modified = written
        return sorted(keep, key=lambda f: f.fused_id)

    def _build_report(
        self, total_accounts: int, outcomes: Sequence[ResolutionOutcome], result: PassResult
    ) -> FusionReport:
        report = FusionReport(
            total_accounts=total_accounts,
            auto_linked=sum(1 for o in outcomes if o.resolution == ResolutionState.AUTO_LINKED),
            new_identities=sum(1 for o in outcomes if o.resolution == ResolutionState.NEW_IDENTITY),
            decisions_applied=self.stats["decisions_applied"],
            errors=[error.message for error in result.errors],
        )
        for outcome in result.pending_reviews:
            report.accounts.append(
                ReportAccount(
                    account_id=outcome.account.id,
                    account_name=outcome.account.name,
                    source=outcome.account.source,
                    state=outcome.resolution.value,
                    attributes=pick_attributes(outcome.fused.attributes, self.config.report_attributes),
                    matches=outcome.review_candidates,
                )
            )
        return report

    async def _notify_report(self, report: FusionReport) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.notify_report(report)
        except Exception as error:  # notifications never fail a pass
            logger.warning(f"Report notification failed: {error}")
