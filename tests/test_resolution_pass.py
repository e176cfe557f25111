"""Integration tests for full resolution passes."""

from datetime import datetime, timedelta

import pytest

from fusioncore.errors import CollaboratorError, ConfigurationError, InvariantViolationError
from fusioncore.resolution.decision_resolver import DecisionResolver
from fusioncore.resolution.fusion_account import FusedAccount
from fusioncore.resolution.models import (
    AccountKind,
    FusedAccountState,
    ResolutionState,
    StatusFlag,
)
from fusioncore.resolution.similarity_scoring import SimilarityAlgorithm, SimilarityScorer

from .conftest import make_account, make_config, make_decision, make_identity


def by_id(result):
    return {fused.fused_id: fused for fused in result.fused_accounts}


class TestAutoLinkPass:
    """Test a pass where the only viable candidate matches."""

    @pytest.mark.asyncio
    async def test_account_adopted_by_identity(
        self, strict_config, resolver_factory, source_factory, john_account, identities, mock_notifier
    ):
        source = source_factory([john_account], identities)
        resolver = resolver_factory(strict_config)

        result = await resolver.resolve_pass(source)

        assert [o.resolution for o in result.outcomes] == [ResolutionState.AUTO_LINKED]
        assert result.outcomes[0].fused.state == ResolutionState.FINALIZED
        assert sorted(by_id(result)) == ["id1", "id2"]

        identity = by_id(result)["id1"]
        assert identity.account_refs == frozenset({"a1"})
        assert identity.uncorrelated is False
        assert "correlated" in identity.actions
        assert identity.history.entries[0].endswith("Set John Smith as baseline")
        assert identity.history.latest.endswith("Auto-linked John A. Smith [hr] (name:83, email:100)")

        assert result.report.total_accounts == 1
        assert result.report.auto_linked == 1
        assert result.report.potential_duplicates == 0
        assert source.prefetched == ["id1", "id2"]
        mock_notifier.notify_report.assert_awaited_once_with(result.report)

    @pytest.mark.asyncio
    async def test_disabled_identity_is_not_a_candidate(self, strict_config, resolver_factory, source_factory, john_account):
        identity = make_identity("id1", "John Smith", "john@example.org", disabled=True)
        source = source_factory([john_account], [identity])

        result = await resolver_factory(strict_config).resolve_pass(source)

        assert result.outcomes[0].resolution == ResolutionState.NEW_IDENTITY
        assert source.prefetched == []


class TestPendingReviewPass:
    """Test a pass that ends with a human review."""

    @pytest.fixture
    def source(self, source_factory, john_account):
        return source_factory(
            [john_account],
            [
                make_identity("id1", "John Smith", "john@example.org"),
                make_identity("id3", "John Smith", "other@example.org"),
            ],
        )

    @pytest.mark.asyncio
    async def test_pending_review_reported_not_persisted(self, config, resolver_factory, source):
        result = await resolver_factory(config).resolve_pass(source)

        assert len(result.pending_reviews) == 1
        outcome = result.pending_reviews[0]
        assert outcome.fused.reviews == {"review-1"}
        assert outcome.fused.state == ResolutionState.PENDING_REVIEW
        assert sorted(by_id(result)) == ["id1", "id3"]

        report = result.report
        assert report.potential_duplicates == 1
        assert report.accounts[0].account_id == "a1"
        assert report.accounts[0].attributes == {"email": "john@example.org"}
        assert [m.id for m in report.accounts[0].matches] == ["id1", "id3"]

    @pytest.mark.asyncio
    async def test_review_failure_collected(self, config, resolver_factory, source, mock_review):
        mock_review.request_review.side_effect = RuntimeError("review service down")

        result = await resolver_factory(config).resolve_pass(source)

        assert len(result.failures) == 1
        assert isinstance(result.failures[0], CollaboratorError)
        assert result.pending_reviews[0].fused.reviews == set()

    @pytest.mark.asyncio
    async def test_report_notification_failure_ignored(self, config, resolver_factory, source, mock_notifier):
        mock_notifier.notify_report.side_effect = RuntimeError("smtp down")

        result = await resolver_factory(config).resolve_pass(source)

        assert result.report.potential_duplicates == 1

    def test_reviewers_by_source(self, config):
        reviewer = FusedAccount.from_identity(config, make_identity("id1", "John Smith", "john@example.org"))
        reviewer.set_source_reviewer("hr")

        assert DecisionResolver._reviewers_by_source([reviewer]) == {"hr": ["id1"]}


class TestNewIdentityPass:
    """Test a pass where nothing matches."""

    @pytest.mark.asyncio
    async def test_unmatched_account_persisted(self, config, resolver_factory, source_factory, john_account):
        result = await resolver_factory(config).resolve_pass(source_factory([john_account]))

        fused = by_id(result)["a1"]
        assert fused.kind == AccountKind.MANAGED
        assert fused.state == ResolutionState.FINALIZED
        assert fused.has_status(StatusFlag.UNMATCHED)
        assert len(fused.history) == 3
        assert result.report.new_identities == 1


class TestDecisionsInPass:
    """Test decisions routed during a pass."""

    @pytest.mark.asyncio
    async def test_link_decision_applied_once_across_passes(
        self, config, resolver_factory, source_factory, john_account
    ):
        identities = [make_identity("id1", "John Smith", "john@example.org")]
        decision = make_decision(john_account, identity_link="id1")

        first = await resolver_factory(config).resolve_pass(
            source_factory([john_account], identities), decisions=[decision]
        )

        assert first.outcomes == []
        identity = by_id(first)["id1"]
        assert identity.account_refs == frozenset({"a1"})
        assert identity.has_status(StatusFlag.AUTHORIZED)
        assert identity.uncorrelated is False
        assert identity.history.latest.endswith("John A. Smith [hr] authorized by Ruth Reviewer")
        assert first.report.decisions_applied == 1

        second = await resolver_factory(config).resolve_pass(
            source_factory([john_account], identities), records=first.states(), decisions=[decision]
        )

        assert second.report.decisions_applied == 0
        assert by_id(second)["id1"].history.entries == identity.history.entries
        assert by_id(second)["id1"].account_refs == frozenset({"a1"})

    @pytest.mark.asyncio
    async def test_new_identity_decision(self, config, resolver_factory, source_factory, john_account):
        result = await resolver_factory(config).resolve_pass(
            source_factory([john_account]), decisions=[make_decision(john_account)]
        )

        fused = by_id(result)["a1"]
        assert result.outcomes == []
        assert fused.kind == AccountKind.DECISION
        assert fused.has_status(StatusFlag.MANUAL)
        assert fused.history.latest.endswith("Created by Ruth Reviewer from John A. Smith [hr]")

    @pytest.mark.asyncio
    async def test_decision_for_unknown_identity(self, config, resolver_factory, source_factory, john_account):
        result = await resolver_factory(config).resolve_pass(
            source_factory([john_account]), decisions=[make_decision(john_account, identity_link="id404")]
        )

        assert len(result.errors) == 1
        assert isinstance(result.errors[0], InvariantViolationError)
        assert result.outcomes[0].resolution == ResolutionState.NEW_IDENTITY

    @pytest.mark.asyncio
    async def test_unfinished_decision_attaches_review(
        self, strict_config, resolver_factory, source_factory, john_account
    ):
        identities = [make_identity("id1", "John Smith", "john@example.org")]
        decision = make_decision(
            john_account, identity_link="id1", finished=False, review_ref="review-7", submitter_id="id1"
        )

        result = await resolver_factory(strict_config).resolve_pass(
            source_factory([john_account], identities), decisions=[decision]
        )

        reviewer = by_id(result)["id1"]
        assert reviewer.reviews == {"review-7"}
        assert reviewer.has_status(StatusFlag.ACTIVE_REVIEWS)
        assert result.report.decisions_applied == 0


class PickyAlgorithm(SimilarityAlgorithm):
    """Refuses to compare one value."""

    name = "picky"

    def compare(self, a, b):
        if "broken" in (a, b):
            raise ConfigurationError("cannot compare 'broken'", setting="algorithm")
        return (100, None) if a == b else (0, None)


class TestErrorIsolation:
    """Test that failures stay with the account that caused them."""

    @pytest.mark.asyncio
    async def test_configuration_error_isolated(self, resolver_factory, source_factory):
        scorer = SimilarityScorer()
        scorer.register(PickyAlgorithm())
        config = make_config(matching_policies=[{"attribute": "name", "algorithm": "picky", "threshold": 100}])
        source = source_factory(
            [
                make_account("a1", "John Smith", "john@example.org"),
                make_account("a2", "Broken", "b@example.org"),
            ],
            [make_identity("id1", "John Smith", "john@example.org")],
        )

        result = await resolver_factory(config, scorer=scorer).resolve_pass(source)

        assert [o.account.id for o in result.outcomes] == ["a1", "a2"]
        assert result.outcomes[0].resolution == ResolutionState.AUTO_LINKED
        assert result.outcomes[1].fused is None
        assert isinstance(result.outcomes[1].error, ConfigurationError)
        assert len(result.errors) == 1
        assert by_id(result)["id1"].account_refs == frozenset({"a1"})


class TestPersistence:
    """Test which aggregates a pass hands back."""

    @pytest.mark.asyncio
    async def test_correlation_on_resolution(
        self, resolver_factory, source_factory, mock_correlator
    ):
        record = FusedAccountState(
            fused_id="id1", identity_link="id1", accounts=["a2"], missing_accounts=["a2"]
        )
        source = source_factory(
            [make_account("a2", "J. Smith", "js@example.org", source="crm")],
            [make_identity("id1", "John Smith", "john@example.org")],
        )
        resolver = resolver_factory(make_config(correlate_on_resolution=True))

        result = await resolver.resolve_pass(source, records=[record])

        mock_correlator.correlate.assert_awaited_once_with("id1", "a2")
        fused = by_id(result)["id1"]
        assert fused.missing_refs == frozenset()
        assert fused.history.latest.endswith("Correlated account a2")

    @pytest.mark.asyncio
    async def test_orphans_dropped_when_delete_empty(self, resolver_factory, source_factory):
        record = FusedAccountState(fused_id="f9")

        kept = await resolver_factory(make_config()).resolve_pass(source_factory(), records=[record])
        dropped = await resolver_factory(make_config(delete_empty=True)).resolve_pass(
            source_factory(), records=[record]
        )

        assert by_id(kept)["f9"].orphan is True
        assert "f9" not in by_id(dropped)

    @pytest.mark.asyncio
    async def test_persisted_aggregates_stamped(self, config, resolver_factory, source_factory, john_account):
        before = datetime.now()

        result = await resolver_factory(config).resolve_pass(source_factory([john_account]))

        state = result.states()[0]
        assert state.modified is not None
        assert state.modified >= before

    @pytest.mark.asyncio
    async def test_changed_member_refreshes_attributes(self, config, resolver_factory, source_factory):
        written = datetime(2024, 1, 1, 12, 0, 0)
        record = FusedAccountState(
            fused_id="id1",
            identity_link="id1",
            accounts=["a1"],
            attributes={"email": "old@example.org"},
            modified=written,
        )
        account = make_account(
            "a1", "John Smith", "john@example.org", identity_link="id1", modified=written + timedelta(days=1)
        )
        source = source_factory([account], [make_identity("id1", "John Smith", "john@example.org")])

        result = await resolver_factory(config).resolve_pass(source, records=[record])

        fused = by_id(result)["id1"]
        assert fused.history.latest.endswith("Refreshed attributes after changes to a1")
        assert fused.attributes["email"] == "john@example.org"
        assert fused.modified > written

    @pytest.mark.asyncio
    async def test_unchanged_member_not_refreshed(self, config, resolver_factory, source_factory):
        written = datetime(2024, 1, 1, 12, 0, 0)
        record = FusedAccountState(fused_id="id1", identity_link="id1", accounts=["a1"], modified=written)
        account = make_account(
            "a1", "John Smith", "john@example.org", identity_link="id1", modified=written + timedelta(seconds=30)
        )
        source = source_factory([account], [make_identity("id1", "John Smith", "john@example.org")])

        result = await resolver_factory(config).resolve_pass(source, records=[record])

        assert not any("Refreshed" in entry for entry in by_id(result)["id1"].history.entries)


class TestGlobalReviewer:
    """Test the identity that reviews accounts from every source."""

    @pytest.mark.asyncio
    async def test_reviews_requested_from_global_reviewer(
        self, resolver_factory, source_factory, mock_review
    ):
        config = make_config(global_reviewer="id9")
        source = source_factory(
            [make_account("a2", "Jane Doe", "jane.doe@example.org", source="crm")],
            [
                make_identity("id2", "Jane Doe", "jane@example.org"),
                make_identity("id9", "Rita Owner", "rita@example.org"),
            ],
        )

        result = await resolver_factory(config).resolve_pass(source)

        owner = by_id(result)["id9"]
        assert owner.has_status(StatusFlag.REVIEWER)
        assert owner.reviewer_sources() == ["crm", "hr"]
        request = mock_review.request_review.await_args.args[0]
        assert request.reviewers == ["id9"]
        assert [c.id for c in request.candidates] == ["id2"]

    @pytest.mark.asyncio
    async def test_unknown_global_reviewer_ignored(self, resolver_factory, source_factory, john_account):
        result = await resolver_factory(make_config(global_reviewer="nobody")).resolve_pass(
            source_factory([john_account])
        )

        assert result.outcomes[0].resolution == ResolutionState.NEW_IDENTITY


class TestPassInvariants:
    """Ref invariants hold on every aggregate a pass touches."""

    @pytest.mark.asyncio
    async def test_missing_refs_are_member_refs(self, config, resolver_factory, source_factory):
        accounts = [
            make_account("a1", "John A. Smith", "john@example.org"),
            make_account("a2", "Jane Doe", "jane.doe@example.org", source="crm"),
            make_account("a3", "Zed Quill", "zed@example.org"),
            make_account("a4", "Old Timer", "old@example.org"),
        ]
        identities = [
            make_identity("id1", "John Smith", "john@example.org"),
            make_identity("id2", "Jane Doe", "jane@example.org"),
        ]
        record = FusedAccountState(fused_id="f9", accounts=["a4"], missing_accounts=["a4"])

        result = await resolver_factory(config).resolve_pass(
            source_factory(accounts, identities), records=[record]
        )

        touched = list(result.fused_accounts) + [o.fused for o in result.outcomes if o.fused is not None]
        assert {o.resolution for o in result.outcomes} == {
            ResolutionState.AUTO_LINKED,
            ResolutionState.PENDING_REVIEW,
            ResolutionState.NEW_IDENTITY,
        }
        for fused in touched:
            assert fused.missing_refs <= fused.account_refs
            assert fused.uncorrelated == bool(fused.missing_refs)
            assert fused.has_status(StatusFlag.UNCORRELATED) == fused.uncorrelated
        assert by_id(result)["f9"].missing_refs == frozenset({"a4"})
