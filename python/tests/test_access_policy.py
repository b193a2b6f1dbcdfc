"""
Unit tests for the access control policy.

The policy is pure: decide() takes an identity, a capability and an
owner, and every endpoint funnels through authorize().
"""

import pytest

from access_policy import (
    Capability,
    Forbidden,
    Identity,
    Role,
    Unauthenticated,
    authorize,
    decide,
    is_privileged,
    visible_rows,
)

ADMIN = Identity(user_id=1, role=Role.ADMIN, person_id=10)
MANAGER = Identity(user_id=2, role=Role.MANAGER, person_id=20)
USER = Identity(user_id=3, role=Role.USER, person_id=30)
UNLINKED = Identity(user_id=4, role=Role.USER, person_id=None)


class TestRoleParsing:

    def test_parse_known_roles(self):
        assert Role.parse("admin") is Role.ADMIN
        assert Role.parse(" Manager ") is Role.MANAGER
        assert Role.parse("USER") is Role.USER

    def test_parse_unknown_role(self):
        with pytest.raises(ValueError, match="Invalid role"):
            Role.parse("superuser")

    def test_parse_none(self):
        with pytest.raises(ValueError):
            Role.parse(None)


class TestDecide:
    """Rule table, first match wins."""

    @pytest.mark.parametrize("capability", list(Capability))
    def test_anonymous_always_401(self, capability):
        decision = decide(None, capability, owner_person_id=30)
        assert decision.allowed is False
        assert decision.status_code == 401

    def test_admin_only(self):
        assert decide(ADMIN, Capability.ADMIN_ONLY).allowed
        assert decide(MANAGER, Capability.ADMIN_ONLY).status_code == 403
        assert decide(USER, Capability.ADMIN_ONLY).status_code == 403

    def test_write(self):
        assert decide(ADMIN, Capability.WRITE).allowed
        assert decide(MANAGER, Capability.WRITE).allowed
        assert decide(USER, Capability.WRITE).status_code == 403

    def test_own_or_privileged(self):
        assert decide(USER, Capability.OWN_OR_PRIVILEGED, 30).allowed
        assert decide(USER, Capability.OWN_OR_PRIVILEGED, 31).status_code == 403
        assert decide(MANAGER, Capability.OWN_OR_PRIVILEGED, 31).allowed
        assert decide(ADMIN, Capability.OWN_OR_PRIVILEGED, 31).allowed

    def test_own_or_privileged_without_owner(self):
        """A plain user never matches an unknown owner."""
        assert decide(USER, Capability.OWN_OR_PRIVILEGED, None).status_code == 403
        assert decide(UNLINKED, Capability.OWN_OR_PRIVILEGED, None).status_code == 403

    def test_self_only(self):
        assert decide(USER, Capability.SELF_ONLY, None).allowed
        assert decide(USER, Capability.SELF_ONLY, 30).allowed
        assert decide(USER, Capability.SELF_ONLY, 31).status_code == 403

    def test_self_only_applies_to_admin(self):
        assert decide(ADMIN, Capability.SELF_ONLY, 30).status_code == 403

    def test_read_any(self):
        for identity in (ADMIN, MANAGER, USER, UNLINKED):
            assert decide(identity, Capability.READ_ANY).allowed


class TestAuthorize:

    def test_returns_identity(self):
        assert authorize(USER, Capability.READ_ANY) is USER

    def test_anonymous_skips_owner_lookup(self):
        calls = []

        def resolve_owner():
            calls.append(1)
            return 30

        with pytest.raises(Unauthenticated) as exc_info:
            authorize(None, Capability.OWN_OR_PRIVILEGED, resolve_owner)
        assert exc_info.value.status_code == 401
        assert calls == []

    def test_forbidden_carries_owner(self):
        with pytest.raises(Forbidden) as exc_info:
            authorize(USER, Capability.OWN_OR_PRIVILEGED, lambda: 99)
        assert exc_info.value.status_code == 403
        assert exc_info.value.owner_person_id == 99
        assert exc_info.value.capability is Capability.OWN_OR_PRIVILEGED

    def test_owner_lookup_errors_propagate(self):
        """Errors raised by the owner lookup propagate unchanged."""
        class Missing(Exception):
            pass

        def resolve_owner():
            raise Missing()

        with pytest.raises(Missing):
            authorize(USER, Capability.OWN_OR_PRIVILEGED, resolve_owner)

    def test_privileged_skips_owner_lookup(self):
        calls = []

        def resolve_owner():
            calls.append(1)
            return None

        assert authorize(MANAGER, Capability.OWN_OR_PRIVILEGED, resolve_owner) is MANAGER
        assert calls == []

    def test_missing_target_is_forbidden_for_users(self):
        with pytest.raises(Forbidden) as exc_info:
            authorize(USER, Capability.OWN_OR_PRIVILEGED, lambda: None)
        assert exc_info.value.owner_person_id is None


class TestVisibleRows:

    ROWS = [{"owner": 30}, {"owner": 31}, {"owner": 30}]

    def test_privileged_sees_everything(self):
        assert len(visible_rows(MANAGER, self.ROWS, lambda r: r["owner"])) == 3

    def test_user_sees_own(self):
        rows = visible_rows(USER, self.ROWS, lambda r: r["owner"])
        assert rows == [{"owner": 30}, {"owner": 30}]

    def test_unlinked_user_sees_nothing(self):
        assert visible_rows(UNLINKED, self.ROWS, lambda r: r["owner"]) == []

    def test_is_privileged(self):
        assert is_privileged(ADMIN)
        assert is_privileged(MANAGER)
        assert not is_privileged(USER)
        assert not is_privileged(None)
