# casedesk/services/policy_resolver.py
"""Organization policy lookups used by candidate ranking.

Trust, favorites and org links are resolved into plain id collections so
callers compute candidate flags by set membership.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field

from flask import current_app, has_app_context

from ..extensions import db
from ..models.organization import ApprovalPolicy, FavoriteContractor, ContractorOrgLink

log = logging.getLogger(__name__)


class InvolvementMode(str, enum.Enum):
    HANDS_OFF = "hands-off"
    BALANCED = "balanced"
    HANDS_ON = "hands-on"

    @classmethod
    def parse(cls, value, default: "InvolvementMode | None" = None) -> "InvolvementMode":
        try:
            return cls(value)
        except ValueError:
            if default is None:
                raise
            log.warning("Unknown involvement mode %r, using %s", value, default.value)
            return default


@dataclass(frozen=True)
class ResolvedPolicy:
    involvement_mode: InvolvementMode = InvolvementMode.BALANCED
    # Kept ordered: the trusted list contributes to candidate pool order
    trusted_contractor_ids: tuple[int, ...] = ()

    @property
    def trusted_set(self) -> frozenset[int]:
        return frozenset(self.trusted_contractor_ids)


@dataclass(frozen=True)
class OrgContractorSets:
    org_linked: tuple[int, ...] = ()
    favorites: tuple[int, ...] = ()
    trusted: tuple[int, ...] = ()
    link_stats: dict = field(default_factory=dict)

    def candidate_pool(self) -> list[int]:
        """Ordered union: org-linked, then favorites, then trusted."""
        return list(dict.fromkeys([*self.org_linked, *self.favorites, *self.trusted]))


def _default_mode() -> InvolvementMode:
    raw = current_app.config.get("DEFAULT_INVOLVEMENT_MODE", "balanced") if has_app_context() else "balanced"
    return InvolvementMode.parse(raw, default=InvolvementMode.BALANCED)


class PolicyResolver:
    def __init__(self, session=None):
        self.session = session or db.session

    def resolve(self, org_id: int) -> ResolvedPolicy:
        policy = self.session.execute(
            db.select(ApprovalPolicy)
            .filter_by(org_id=org_id, is_active=True)
            .order_by(ApprovalPolicy.id.desc())
        ).scalars().first()

        default = _default_mode()
        if policy is None:
            return ResolvedPolicy(involvement_mode=default)

        trusted = tuple(dict.fromkeys(int(i) for i in (policy.trusted_contractor_ids or []) if i))
        return ResolvedPolicy(
            involvement_mode=InvolvementMode.parse(policy.involvement_mode, default=default),
            trusted_contractor_ids=trusted,
        )

    def favorite_ids(self, org_id: int) -> tuple[int, ...]:
        rows = self.session.execute(
            db.select(FavoriteContractor.contractor_user_id)
            .filter_by(org_id=org_id)
            .order_by(FavoriteContractor.id)
        ).scalars().all()
        return tuple(rows)

    def active_links(self, org_id: int) -> list[ContractorOrgLink]:
        return self.session.execute(
            db.select(ContractorOrgLink)
            .filter_by(org_id=org_id, status="active")
            .order_by(ContractorOrgLink.id)
        ).scalars().all()

    def contractor_sets(self, org_id: int, policy: ResolvedPolicy | None = None) -> OrgContractorSets:
        policy = policy or self.resolve(org_id)
        links = self.active_links(org_id)
        return OrgContractorSets(
            org_linked=tuple(l.contractor_user_id for l in links),
            favorites=self.favorite_ids(org_id),
            trusted=policy.trusted_contractor_ids,
            link_stats={l.contractor_user_id: l for l in links},
        )
