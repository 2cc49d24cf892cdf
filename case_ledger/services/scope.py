"""
Scope Resolver: role-derived visibility and assignment rules.

Every handler asks one ``ScopeResolver`` which rows of a table the caller may
read or write, and which staff names the caller may assign. Rules are fixed
business constants:

- admin (and the internal system actor): unrestricted
- manager: rows assigned to a subordinate, or created by the manager
- intake: leads and customer-type cases assigned to or created by them;
  never confirmed clients
- consultant: confirmed clients and client-type cases assigned to them;
  never leads
- staff: rows assigned to them

Names are stored normalized (title prefix stripped). The SQL predicate still
matches titled legacy values in one ``IN`` over the lower-cased column.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from sqlalchemy import and_, false, func, or_, true
from sqlalchemy.sql.elements import ColumnElement

from ..models import (
    Case,
    CaseType,
    ConfirmedClient,
    Invoice,
    Lead,
    Role,
    StaffUser,
)
from .errors import ScopeViolationError, TeamBoundaryError


# =============================================================================
# ROSTER
# =============================================================================


CONSULTANT_BY_USERNAME: dict[str, str] = {
    "admirim": "Albert",
    "albert": "Albert",
    "kejdi": "Kejdi",
    "lenci": "Lenci",
    "kejdi1": "Kejdi 1",
    "kejdi2": "Kejdi 2",
    "kejdi3": "Kejdi 3",
}

TEAM_MEMBERS_BY_MANAGER: dict[str, tuple[str, ...]] = {
    "lenci": ("kejdi1", "kejdi2", "kejdi3"),
}

# Hard boundaries: client cases -> client team, customer cases -> intake team
CLIENT_LAWYERS: tuple[str, ...] = ("Kejdi", "Albert")
INTAKE_LAWYERS: tuple[str, ...] = ("Lenci", "Kejdi 1", "Kejdi 2", "Kejdi 3")

TITLE_PREFIXES = ("dr", "mag")
_TITLE_PATTERN = re.compile(r"^\s*(?:dr|mag)(?:\.\s*|\s+)", re.IGNORECASE)


def normalize_staff_name(value: Any) -> str:
    """Strip a leading professional title ("Dr.", "Mag.") and whitespace."""
    return _TITLE_PATTERN.sub("", str(value or "")).strip()


def name_variants(names: Iterable[str]) -> list[str]:
    """Lower-cased bare and titled spellings of each name."""
    variants: list[str] = []
    for name in names:
        clean = normalize_staff_name(name).lower()
        if not clean:
            continue
        variants.append(clean)
        for prefix in TITLE_PREFIXES:
            variants.extend((f"{prefix}. {clean}", f"{prefix}.{clean}", f"{prefix} {clean}"))
    return variants


def roster_for(case_type: CaseType) -> tuple[str, ...]:
    return CLIENT_LAWYERS if case_type == CaseType.CLIENT else INTAKE_LAWYERS


def validate_team_boundary(case_type: CaseType, assignee: str | None) -> None:
    """Reject a case assignee outside the roster for its case type.

    An empty assignee is allowed (unassigned case).
    """
    if not assignee:
        return
    name = normalize_staff_name(assignee)
    roster = roster_for(case_type)
    if name not in roster:
        label = "Client" if case_type == CaseType.CLIENT else "Customer"
        raise TeamBoundaryError(
            f"{label} cases can only be assigned to: {', '.join(roster)}"
        )


# =============================================================================
# ACTOR
# =============================================================================


@dataclass(frozen=True)
class Actor:
    """The identity a request (or the scheduler) acts as."""

    username: str
    role: Role
    staff_name: str = ""
    managed_names: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def for_username(
        cls,
        username: str,
        role: Role,
        consultant_name: str | None = None,
    ) -> "Actor":
        staff_name = normalize_staff_name(
            consultant_name or CONSULTANT_BY_USERNAME.get(username, "")
        )
        managed: tuple[str, ...] = ()
        if role == Role.MANAGER:
            managed = tuple(
                name
                for name in (
                    normalize_staff_name(CONSULTANT_BY_USERNAME.get(member, ""))
                    for member in TEAM_MEMBERS_BY_MANAGER.get(username, ())
                )
                if name
            )
        return cls(username=username, role=role, staff_name=staff_name, managed_names=managed)

    @classmethod
    def from_staff_user(cls, user: StaffUser) -> "Actor":
        return cls.for_username(user.username, user.role, user.consultant_name)

    @classmethod
    def system(cls) -> "Actor":
        return cls(username="system", role=Role.SYSTEM)

    @classmethod
    def portal(cls) -> "Actor":
        """A client acting through their portal link."""
        return cls(username="portal-client", role=Role.SYSTEM)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_unrestricted(self) -> bool:
        return self.role in (Role.ADMIN, Role.SYSTEM)

    @property
    def handles_leads(self) -> bool:
        """Roles that work the pre-confirmation pipeline."""
        return self.role in (Role.ADMIN, Role.MANAGER, Role.INTAKE, Role.SYSTEM)


# =============================================================================
# SCOPE RESOLVER
# =============================================================================


class Collection(str, Enum):
    LEADS = "leads"
    CLIENTS = "confirmed_clients"
    CASES = "cases"
    INVOICES = "invoices"


_COLLECTION_BY_MODEL: dict[type, Collection] = {
    Lead: Collection.LEADS,
    ConfirmedClient: Collection.CLIENTS,
    Case: Collection.CASES,
    Invoice: Collection.INVOICES,
}


class ScopeResolver:
    """Builds row predicates and validates assignments for one actor."""

    def __init__(self, actor: Actor):
        self.actor = actor

    # =========================================================================
    # READ / WRITE PREDICATES
    # =========================================================================

    def predicate(self, model: type) -> ColumnElement[bool]:
        """SQL predicate selecting the rows of ``model`` the actor may touch."""
        collection = _COLLECTION_BY_MODEL[model]
        actor = self.actor

        if actor.is_unrestricted:
            return true()

        own = self._name_clause(model.assigned_to, [actor.staff_name])
        created = model.created_by == actor.username

        if actor.role == Role.MANAGER:
            clauses = [created]
            if actor.managed_names:
                clauses.insert(0, self._name_clause(model.assigned_to, actor.managed_names))
            return or_(*clauses)

        if actor.role == Role.INTAKE:
            if collection in (Collection.CLIENTS, Collection.INVOICES):
                return false()
            clause = or_(own, created)
            if collection == Collection.CASES:
                return and_(model.case_type == CaseType.CUSTOMER, clause)
            return clause

        if actor.role == Role.CONSULTANT:
            if collection == Collection.LEADS:
                return false()
            if collection == Collection.CASES:
                return and_(model.case_type == CaseType.CLIENT, own)
            return own

        return own

    @staticmethod
    def _name_clause(column: Any, names: Iterable[str]) -> ColumnElement[bool]:
        variants = name_variants(names)
        if not variants:
            return false()
        return func.lower(func.trim(column)).in_(variants)

    # =========================================================================
    # ASSIGNMENT RULES
    # =========================================================================

    def assignee_for_create(self, requested: str | None) -> str:
        """Assignee stored on a newly created record."""
        clean = normalize_staff_name(requested)
        if self.actor.is_unrestricted or self.actor.role == Role.MANAGER:
            return clean
        return self._pin_to_self(clean)

    def assignee_for_update(
        self,
        requested: str | None,
        *,
        confirmed: bool = False,
    ) -> str | None:
        """Assignee to write on update; ``None`` leaves the stored value alone.

        Only admins reassign confirmed clients freely; everyone else editing a
        confirmed client is pinned to their own name.
        """
        if requested is None:
            return None
        clean = normalize_staff_name(requested)
        if self.actor.is_unrestricted:
            return clean
        if self.actor.role == Role.MANAGER and not confirmed:
            return clean
        return self._pin_to_self(clean)

    def _pin_to_self(self, requested: str) -> str:
        own = self.actor.staff_name
        if not own:
            raise ScopeViolationError(
                f"User {self.actor.username} has no staff name and cannot own records"
            )
        if requested and requested != own:
            raise ScopeViolationError(
                f"{self.actor.role.value} users may only assign records to themselves ({own})"
            )
        return own

    @property
    def can_dismiss_notifications(self) -> bool:
        return self.actor.role in (Role.ADMIN, Role.MANAGER, Role.INTAKE, Role.SYSTEM)
