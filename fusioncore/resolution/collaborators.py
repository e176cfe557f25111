"""
Collaborator Contracts

Narrow interfaces the resolver uses to reach the outside world: reading
accounts and identities, requesting human reviews, sending notifications and
correlating accounts. The resolver never writes to a source system itself.
"""

from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Protocol, runtime_checkable

from .models import IdentityRecord, ReviewRequest, SourceAccount

if TYPE_CHECKING:
    from .report import FusionReport


@runtime_checkable
class AccountSource(Protocol):
    """Read-only access to accounts and canonical identities."""

    def list_accounts(self) -> List[SourceAccount]: ...

    def list_identities(self) -> List[IdentityRecord]: ...

    def get_identity(self, identity_id: str) -> Optional[IdentityRecord]: ...

    def prefetch(self, identity_ids: Iterable[str]) -> None: ...


class ReviewCollaborator(Protocol):
    """Creates a review for a pending account and returns its reference."""

    async def request_review(self, request: ReviewRequest) -> Optional[str]: ...


class NotificationCollaborator(Protocol):
    """Fire-and-forget notifications. Failures never affect resolution."""

    async def notify_pending_review(self, request: ReviewRequest) -> None: ...

    async def notify_report(self, report: "FusionReport") -> None: ...


class Correlator(Protocol):
    """Physically links an account to an identity in its source system."""

    async def correlate(self, identity_id: str, account_id: str) -> bool: ...


class InMemoryAccountSource:
    """Account source backed by lists, used by the CLI and in tests."""

    def __init__(
        self,
        accounts: Iterable[SourceAccount] = (),
        identities: Iterable[IdentityRecord] = (),
    ):
        self._accounts = list(accounts)
        self._identities: Dict[str, IdentityRecord] = {
            identity.id: identity for identity in identities
        }
        self.prefetched: List[str] = []

    def list_accounts(self) -> List[SourceAccount]:
        return list(self._accounts)

    def list_identities(self) -> List[IdentityRecord]:
        return [self._identities[key] for key in sorted(self._identities)]

    def get_identity(self, identity_id: str) -> Optional[IdentityRecord]:
        return self._identities.get(identity_id)

    def prefetch(self, identity_ids: Iterable[str]) -> None:
        self.prefetched.extend(identity_ids)
