"""Authorization of media URL issuance.

Privileged roles see every media item. Everyone else needs a grant for the
exact media id being requested; grants never carry over to other items.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, Protocol

from adaptive_media.core.logging import log_error
from adaptive_media.core.metrics import ACCESS_DECISIONS_TOTAL
from adaptive_media.modules.access.exceptions import AccessDenied

logger = logging.getLogger(__name__)

ACCESS_CLASS_PRIVILEGED = "privileged"
ACCESS_CLASS_GRANTED = "granted"


class AccessLookup(Protocol):
    async def get_roles(self, user_id: uuid.UUID) -> list[str]: ...

    async def has_grant(self, user_id: uuid.UUID, media_id: uuid.UUID) -> bool: ...


@dataclass(frozen=True)
class Principal:
    """Authenticated caller."""
    id: uuid.UUID


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    access_class: str
    reason: str


class MediaAccessGuard:
    def __init__(self, lookup: AccessLookup, privileged_roles: Iterable[str]):
        self.lookup = lookup
        self.privileged_roles = frozenset(role.lower() for role in privileged_roles)

    async def check(self, principal: Principal, media_id: uuid.UUID) -> AccessDecision:
        """Decide whether ``principal`` may receive URLs for ``media_id``.

        A failing role or grant lookup yields a denial rather than an error.
        """
        try:
            roles = await self.lookup.get_roles(principal.id)
        except Exception as e:
            log_error(logger, "Role lookup failed, denying access", e, principal_id=str(principal.id))
            return self._record(AccessDecision(False, ACCESS_CLASS_GRANTED, "role_lookup_failed"))

        if self._has_privileged_role(roles):
            return self._record(AccessDecision(True, ACCESS_CLASS_PRIVILEGED, "privileged_role"))

        try:
            granted = await self.lookup.has_grant(principal.id, media_id)
        except Exception as e:
            log_error(
                logger,
                "Grant lookup failed, denying access",
                e,
                principal_id=str(principal.id),
                media_id=str(media_id),
            )
            return self._record(AccessDecision(False, ACCESS_CLASS_GRANTED, "grant_lookup_failed"))

        if granted:
            return self._record(AccessDecision(True, ACCESS_CLASS_GRANTED, "grant"))
        return self._record(AccessDecision(False, ACCESS_CLASS_GRANTED, "no_grant"))

    async def is_privileged(self, principal: Principal) -> bool:
        """Whether ``principal`` holds a privileged role.

        A failing role lookup counts as unprivileged.
        """
        try:
            roles = await self.lookup.get_roles(principal.id)
        except Exception as e:
            log_error(logger, "Role lookup failed, treating caller as unprivileged", e, principal_id=str(principal.id))
            return False
        return self._has_privileged_role(roles)

    async def can_access(self, principal: Principal, media_id: uuid.UUID) -> bool:
        return (await self.check(principal, media_id)).allowed

    async def require_access(self, principal: Principal, media_id: uuid.UUID) -> AccessDecision:
        """Like :meth:`check`, raising AccessDenied instead of returning a denial."""
        decision = await self.check(principal, media_id)
        if not decision.allowed:
            raise AccessDenied(str(principal.id), str(media_id))
        return decision

    def _has_privileged_role(self, roles: Iterable[str]) -> bool:
        return any(role.lower() in self.privileged_roles for role in roles)

    @staticmethod
    def _record(decision: AccessDecision) -> AccessDecision:
        ACCESS_DECISIONS_TOTAL.labels(
            decision="allow" if decision.allowed else "deny",
            reason=decision.reason,
        ).inc()
        return decision
