"""Property-based tests for the media access guard.

Privileged roles see everything; everyone else needs a grant for the exact
media id; lookup failures deny.
"""

import uuid
from typing import Optional

import pytest
from hypothesis import given, settings, strategies as st

from adaptive_media.modules.access.exceptions import AccessDenied
from adaptive_media.modules.access.guard import (
    ACCESS_CLASS_GRANTED,
    ACCESS_CLASS_PRIVILEGED,
    MediaAccessGuard,
    Principal,
)

PRIVILEGED = ["superadmin", "admin", "manager", "owner", "chatter", "agency"]
ALL_ROLES = PRIVILEGED + ["fan", "creator"]


class FakeLookup:
    def __init__(
        self,
        roles: Optional[dict[uuid.UUID, list[str]]] = None,
        grants: Optional[set[tuple[uuid.UUID, uuid.UUID]]] = None,
        fail_roles: bool = False,
        fail_grants: bool = False,
    ):
        self.roles = roles or {}
        self.grants = grants or set()
        self.fail_roles = fail_roles
        self.fail_grants = fail_grants

    async def get_roles(self, user_id: uuid.UUID) -> list[str]:
        if self.fail_roles:
            raise ConnectionError("database unavailable")
        return self.roles.get(user_id, [])

    async def has_grant(self, user_id: uuid.UUID, media_id: uuid.UUID) -> bool:
        if self.fail_grants:
            raise ConnectionError("database unavailable")
        return (user_id, media_id) in self.grants


roles_strategy = st.lists(st.sampled_from(ALL_ROLES), max_size=4, unique=True)


class TestAccessDecisions:
    """Allow iff privileged role or grant for the exact item."""

    @given(roles=roles_strategy, granted=st.booleans())
    @settings(max_examples=100)
    @pytest.mark.asyncio
    async def test_allow_iff_privileged_or_granted(self, roles: list[str], granted: bool) -> None:
        user, media = uuid.uuid4(), uuid.uuid4()
        lookup = FakeLookup(roles={user: roles}, grants={(user, media)} if granted else set())
        guard = MediaAccessGuard(lookup, PRIVILEGED)

        decision = await guard.check(Principal(id=user), media)

        privileged = any(role in PRIVILEGED for role in roles)
        assert decision.allowed == (privileged or granted)
        if privileged:
            assert decision.access_class == ACCESS_CLASS_PRIVILEGED
        else:
            assert decision.access_class == ACCESS_CLASS_GRANTED

    @given(roles=st.lists(st.sampled_from(["fan", "creator"]), max_size=2, unique=True))
    @settings(max_examples=100)
    @pytest.mark.asyncio
    async def test_grant_does_not_transfer(self, roles: list[str]) -> None:
        user, media, other = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        guard = MediaAccessGuard(FakeLookup(roles={user: roles}, grants={(user, media)}), PRIVILEGED)

        assert await guard.can_access(Principal(id=user), media)
        assert not await guard.can_access(Principal(id=user), other)

    @pytest.mark.asyncio
    async def test_role_match_is_case_insensitive(self) -> None:
        user = uuid.uuid4()
        guard = MediaAccessGuard(FakeLookup(roles={user: ["Admin"]}), PRIVILEGED)
        assert await guard.can_access(Principal(id=user), uuid.uuid4())

    @pytest.mark.asyncio
    async def test_require_access_raises(self) -> None:
        guard = MediaAccessGuard(FakeLookup(), PRIVILEGED)
        with pytest.raises(AccessDenied):
            await guard.require_access(Principal(id=uuid.uuid4()), uuid.uuid4())


class TestLookupFailures:
    """Failing lookups deny instead of raising."""

    @pytest.mark.asyncio
    async def test_role_lookup_failure_denies(self) -> None:
        guard = MediaAccessGuard(FakeLookup(fail_roles=True), PRIVILEGED)
        decision = await guard.check(Principal(id=uuid.uuid4()), uuid.uuid4())
        assert decision.allowed is False
        assert decision.reason == "role_lookup_failed"

    @pytest.mark.asyncio
    async def test_grant_lookup_failure_denies(self) -> None:
        user = uuid.uuid4()
        guard = MediaAccessGuard(FakeLookup(roles={user: ["fan"]}, fail_grants=True), PRIVILEGED)
        decision = await guard.check(Principal(id=user), uuid.uuid4())
        assert decision.allowed is False
        assert decision.reason == "grant_lookup_failed"

    @pytest.mark.asyncio
    async def test_privileged_role_skips_grant_lookup(self) -> None:
        user = uuid.uuid4()
        guard = MediaAccessGuard(FakeLookup(roles={user: ["owner"]}, fail_grants=True), PRIVILEGED)
        assert await guard.can_access(Principal(id=user), uuid.uuid4())


class TestPrivilegedCheck:
    """Role-only check used to gate operator endpoints."""

    @given(roles=roles_strategy, granted=st.booleans())
    @settings(max_examples=100)
    @pytest.mark.asyncio
    async def test_privileged_iff_privileged_role(self, roles: list[str], granted: bool) -> None:
        user, media = uuid.uuid4(), uuid.uuid4()
        lookup = FakeLookup(roles={user: roles}, grants={(user, media)} if granted else set())
        guard = MediaAccessGuard(lookup, PRIVILEGED)

        result = await guard.is_privileged(Principal(user))

        assert result == any(role in PRIVILEGED for role in roles)

    @pytest.mark.asyncio
    async def test_role_match_is_case_insensitive(self) -> None:
        user = uuid.uuid4()
        guard = MediaAccessGuard(FakeLookup(roles={user: ["Manager"]}), ["MANAGER"])
        assert await guard.is_privileged(Principal(user)) is True

    @pytest.mark.asyncio
    async def test_role_lookup_failure_is_unprivileged(self) -> None:
        guard = MediaAccessGuard(FakeLookup(fail_roles=True), PRIVILEGED)
        assert await guard.is_privileged(Principal(uuid.uuid4())) is False
