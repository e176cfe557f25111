"""Test configuration and fixtures for identity fusion tests."""

import pytest
from unittest.mock import AsyncMock, Mock
from typing import Any, Dict, List

from fusioncore.config import FusionConfig, MatchingPolicy
from fusioncore.resolution.collaborators import InMemoryAccountSource
from fusioncore.resolution.decision_resolver import DecisionResolver
from fusioncore.resolution.models import (
    Decision,
    IdentityRecord,
    SourceAccount,
    Submitter,
)


def make_config(mandatory_email: bool = False, **overrides: Any) -> FusionConfig:
    """Name scored with LIG3, email compared exactly."""
    settings: Dict[str, Any] = {
        "sources": ["hr", "crm"],
        "matching_policies": [
            MatchingPolicy(attribute="name", algorithm="lig3", threshold=80),
            MatchingPolicy(
                attribute="email", algorithm="exact", threshold=100, mandatory=mandatory_email
            ),
        ],
        "report_attributes": ["email"],
    }
    settings.update(overrides)
    return FusionConfig(**settings)


def make_account(account_id: str, name: str, email: str, source: str = "hr", **kwargs) -> SourceAccount:
    return SourceAccount(
        id=account_id,
        source=source,
        name=name,
        attributes={"name": name, "email": email},
        **kwargs,
    )


def make_identity(identity_id: str, name: str, email: str, accounts: List[str] = None, **kwargs) -> IdentityRecord:
    return IdentityRecord(
        id=identity_id,
        name=name,
        attributes={"name": name, "email": email},
        accounts=accounts or [],
        **kwargs,
    )


def make_decision(account: SourceAccount, identity_link: str = None, **kwargs) -> Decision:
    return Decision(
        submitter=Submitter(id=kwargs.pop("submitter_id", "rev-1"), name="Ruth Reviewer"),
        account_id=account.id,
        account_name=account.name,
        source=account.source,
        new_identity=identity_link is None,
        identity_link=identity_link,
        **kwargs,
    )


@pytest.fixture
def config():
    """Config with a non-mandatory email policy."""
    return make_config()


@pytest.fixture
def strict_config():
    """Config where a differing email disqualifies a candidate."""
    return make_config(mandatory_email=True)


@pytest.fixture
def john_account():
    return make_account("a1", "John A. Smith", "john@example.org")


@pytest.fixture
def identities():
    """Two canonical identities with distinct emails."""
    return [
        make_identity("id1", "John Smith", "john@example.org"),
        make_identity("id2", "Jane Doe", "jane@example.org"),
    ]


@pytest.fixture
def mock_review():
    """Review collaborator returning a review reference."""
    review = Mock()
    review.request_review = AsyncMock(return_value="review-1")
    return review


@pytest.fixture
def mock_notifier():
    notifier = Mock()
    notifier.notify_pending_review = AsyncMock(return_value=None)
    notifier.notify_report = AsyncMock(return_value=None)
    return notifier


@pytest.fixture
def mock_correlator():
    correlator = Mock()
    correlator.correlate = AsyncMock(return_value=True)
    return correlator


@pytest.fixture
def resolver_factory(mock_review, mock_notifier, mock_correlator):
    """Build a resolver wired to mock collaborators."""

    def factory(config: FusionConfig, **kwargs) -> DecisionResolver:
        kwargs.setdefault("review", mock_review)
        kwargs.setdefault("notifier", mock_notifier)
        kwargs.setdefault("correlator", mock_correlator)
        return DecisionResolver(config, **kwargs)

    return factory


@pytest.fixture
def source_factory():
    def factory(accounts=(), identities=()) -> InMemoryAccountSource:
        return InMemoryAccountSource(accounts, identities)

    return factory
