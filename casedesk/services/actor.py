# casedesk/services/actor.py
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Actor:
    """Who is calling, as far as visibility and counter-proposal roles go.

    Contractors see the quotes they wrote; everybody else sees the cases of
    their own organization.
    """
    user_id: int
    role: str = "landlord"  # landlord|owner|contractor
    org_id: int | None = None

    @property
    def is_contractor(self) -> bool:
        return self.role == "contractor"

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(user_id=user.id, role=user.negotiation_role, org_id=user.org_id)
