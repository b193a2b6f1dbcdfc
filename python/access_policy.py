"""
Access Control Policy

Single decision point for every identity-scoped request. Endpoints never
compare roles themselves; they name the capability they need and, where
the target belongs to someone, hand over a callable that resolves the
owning person id.

Rules are evaluated in order and the first match wins:

1. No identity                      -> Unauthenticated (401)
2. ADMIN_ONLY                       -> role == admin
3. WRITE                            -> role in {admin, manager}
4. OWN_OR_PRIVILEGED                -> owner == caller.person_id or privileged
5. SELF_ONLY                        -> owner is None or owner == caller.person_id
6. READ_ANY                         -> any authenticated caller
7. anything else                    -> Forbidden (403)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional, TypeVar

T = TypeVar('T')


class Role(str, Enum):
    """Account roles"""
    ADMIN = "admin"
    MANAGER = "manager"
    USER = "user"

    @classmethod
    def parse(cls, value: Optional[str]) -> 'Role':
        """Parse a role string, raising ValueError on anything unknown"""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(r.value for r in cls)
            raise ValueError(f"Invalid role '{value}'. Must be one of: {valid}")


PRIVILEGED_ROLES = frozenset({Role.ADMIN, Role.MANAGER})


class Capability(str, Enum):
    """What the caller is asking to do"""
    ADMIN_ONLY = "admin-only"
    WRITE = "write"
    OWN_OR_PRIVILEGED = "read-own-or-privileged"
    SELF_ONLY = "self-only"
    READ_ANY = "read-any"


@dataclass(frozen=True)
class Identity:
    """Resolved caller identity, passed explicitly into every decision"""
    user_id: int
    role: Role
    person_id: Optional[int] = None
    email: str = ""
    username: Optional[str] = None

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES


@dataclass(frozen=True)
class Decision:
    """Outcome of a policy evaluation"""
    allowed: bool
    status_code: int = 200
    reason: str = ""


class AccessDenied(Exception):
    """Base class for policy rejections"""
    status_code = 403

    def __init__(
        self,
        message: str,
        capability: Optional[Capability] = None,
        owner_person_id: Optional[int] = None
    ):
        super().__init__(message)
        self.message = message
        self.capability = capability
        self.owner_person_id = owner_person_id


class Unauthenticated(AccessDenied):
    """No valid session"""
    status_code = 401


class Forbidden(AccessDenied):
    """Authenticated, but not allowed to do this"""
    status_code = 403


ALLOW = Decision(True)


def is_privileged(identity: Optional[Identity]) -> bool:
    """True for admin and manager callers"""
    return identity is not None and identity.is_privileged


def decide(
    identity: Optional[Identity],
    capability: Capability,
    owner_person_id: Optional[int] = None
) -> Decision:
    """Evaluate the access rules for one request

    Args:
        identity: Caller identity, or None when there is no session
        capability: Capability being requested
        owner_person_id: Person owning the target resource, when relevant

    Returns:
        Decision with allowed flag, status code and reason
    """
    if identity is None:
        return Decision(False, 401, "Not authenticated")

    if capability == Capability.ADMIN_ONLY:
        if identity.role == Role.ADMIN:
            return ALLOW
        return Decision(False, 403, "Admin role required")

    if capability == Capability.WRITE:
        if identity.is_privileged:
            return ALLOW
        return Decision(False, 403, "Admin or manager role required")

    if capability == Capability.OWN_OR_PRIVILEGED:
        if identity.is_privileged:
            return ALLOW
        if owner_person_id is not None and identity.person_id == owner_person_id:
            return ALLOW
        return Decision(False, 403, "You can only access your own records")

    if capability == Capability.SELF_ONLY:
        if owner_person_id is None or identity.person_id == owner_person_id:
            return ALLOW
        return Decision(False, 403, "You can only access your own records")

    if capability == Capability.READ_ANY:
        return ALLOW

    return Decision(False, 403, "Forbidden")


def authorize(
    identity: Optional[Identity],
    capability: Capability,
    resolve_owner: Optional[Callable[[], Optional[int]]] = None
) -> Identity:
    """Gate a request, raising when the policy rejects it

    The owner lookup is only performed once the caller is known to be
    authenticated, so anonymous requests never touch storage. Privileged
    callers skip it for OWN_OR_PRIVILEGED; a missing target (owner None)
    is forbidden to everyone else.

    Args:
        identity: Caller identity or None
        capability: Capability being requested
        resolve_owner: Zero-argument callable returning the owning person id

    Returns:
        The identity, for convenient chaining

    Raises:
        Unauthenticated: No session
        Forbidden: The rules reject the request
    """
    if identity is None:
        raise Unauthenticated("Not authenticated", capability)

    needs_owner = not (capability == Capability.OWN_OR_PRIVILEGED and identity.is_privileged)
    owner = resolve_owner() if resolve_owner is not None and needs_owner else None
    decision = decide(identity, capability, owner)
    if not decision.allowed:
        if decision.status_code == 401:
            raise Unauthenticated(decision.reason, capability)
        raise Forbidden(decision.reason, capability, owner)
    return identity


def visible_rows(
    identity: Identity,
    rows: Iterable[T],
    owner_of: Callable[[T], Optional[int]]
) -> List[T]:
    """Narrow a READ_ANY result set to what the caller may see

    Privileged callers see everything; a plain user sees only rows
    owned by their own person.
    """
    rows = list(rows)
    if identity.is_privileged:
        return rows
    if identity.person_id is None:
        return []
    return [row for row in rows if owner_of(row) == identity.person_id]
