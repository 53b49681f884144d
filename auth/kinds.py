"""
auth/kinds.py -- Principal kind descriptors.

Users and Employees share every authentication flow. What differs between
them is data, not behaviour: the name stamped on refresh token records, the
roles a new account starts with, and the audience claim carried by their
tokens. PrincipalKind bundles that data so one AuthService, one TokenCodec
and one access guard serve both kinds.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PrincipalKind:
    """Static description of one class of principal.

    name:          Stored as refresh_tokens.subject_kind ("User" | "Employee").
    default_roles: Roles assigned at registration.
    audience:      Value of the "aud" claim, or None when tokens carry no audience.
    """

    name: str
    default_roles: tuple[str, ...]
    audience: str | None = None


USER = PrincipalKind(name="User", default_roles=("user",))
EMPLOYEE = PrincipalKind(name="Employee", default_roles=("employee",), audience="employee")

KINDS: dict[str, PrincipalKind] = {kind.name: kind for kind in (USER, EMPLOYEE)}
