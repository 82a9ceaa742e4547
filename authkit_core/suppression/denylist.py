"""
Denylist Service
================
Checks identifiers against the durable denylist and a replaceable set of
disposable email domains.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Iterable, List, Optional, Union

import structlog

from ..identifier import Identifier
from ..metrics import DENYLIST_HITS
from .models import DenylistCheck, DenylistEntry, SuppressionSource

if TYPE_CHECKING:
    from ..stores.base import DenylistStore

logger = structlog.get_logger(__name__)

DEFAULT_DISPOSABLE_DOMAINS = frozenset({
    "10minutemail.com",
    "guerrillamail.com",
    "mailinator.com",
    "tempmail.com",
    "throwaway.email",
    "yopmail.com",
    "temp-mail.org",
    "getnada.com",
    "mohmal.com",
    "fakeinbox.com",
})

DISPOSABLE_EMAIL_REASON = "Disposable email addresses are not allowed"


def _as_identifier(identifier: Union[Identifier, str]) -> Identifier:
    return identifier if isinstance(identifier, Identifier) else Identifier.create(identifier)


class DenylistService:
    """
    Usage:
        denylist = DenylistService(InMemoryDenylistStore())
        check = await denylist.check_identifier("user@mailinator.com")
        if check.blocked:
            ...
    """

    def __init__(
        self,
        store: "DenylistStore",
        disposable_domains: Optional[Iterable[str]] = None,
    ):
        self.store = store
        domains = DEFAULT_DISPOSABLE_DOMAINS if disposable_domains is None else disposable_domains
        self.disposable_domains = {d.lower() for d in domains}

    async def check_identifier(
        self,
        identifier: Union[Identifier, str],
        now: Optional[datetime] = None,
    ) -> DenylistCheck:
        """
        Durable denylist first, then disposable email domains.

        Raises:
            ValidationError: if a raw identifier cannot be parsed
        """
        identifier = _as_identifier(identifier)

        check = await self.store.is_blocked(identifier.hash, now)
        if check.blocked:
            DENYLIST_HITS.labels(source=SuppressionSource.DENYLIST.value).inc()
            logger.warning("identifier_denylisted", identifier_hash=identifier.hash, reason=check.reason)
            return check

        if identifier.is_email and self.is_disposable_domain(identifier.email_domain):
            DENYLIST_HITS.labels(source=SuppressionSource.DISPOSABLE_EMAIL.value).inc()
            logger.warning("disposable_email_blocked", domain=identifier.email_domain)
            return DenylistCheck(
                blocked=True,
                reason=DISPOSABLE_EMAIL_REASON,
                source=SuppressionSource.DISPOSABLE_EMAIL,
            )

        return DenylistCheck(blocked=False)

    async def block_identifier(
        self,
        identifier: Union[Identifier, str],
        reason: str,
        expires_at: Optional[datetime] = None,
    ) -> None:
        """Add to the denylist. No ``expires_at`` blocks permanently."""
        identifier = _as_identifier(identifier)
        await self.store.add(identifier.hash, reason, expires_at)
        logger.info(
            "identifier_blocked",
            identifier_hash=identifier.hash,
            kind=identifier.kind.value,
            reason=reason,
            expires_at=expires_at.isoformat() if expires_at else None,
        )

    async def unblock_identifier(self, identifier: Union[Identifier, str]) -> None:
        identifier = _as_identifier(identifier)
        await self.store.remove(identifier.hash)
        logger.info("identifier_unblocked", identifier_hash=identifier.hash, kind=identifier.kind.value)

    async def list_entries(self, limit: int = 100) -> List[DenylistEntry]:
        return await self.store.list(limit)

    def add_disposable_domain(self, domain: str) -> None:
        self.disposable_domains.add(domain.lower())

    def is_disposable_domain(self, domain: str) -> bool:
        return domain.lower() in self.disposable_domains
