# casedesk/services/ranking.py
"""Contractor shortlist for a case.

``rank`` is pure: same category, pool and policy always give the same
ordering. ``rank_candidates`` loads the organization's pool from the
database and returns the sanitized response handed to requesters.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Iterable, NamedTuple

from flask import current_app, has_app_context

from ..errors import NotFound
from ..extensions import db
from ..models.case import Case
from ..models.user import User
from .policy_resolver import InvolvementMode, PolicyResolver, ResolvedPolicy

log = logging.getLogger(__name__)

SHORTLIST_SIZE = 3


class Weights(NamedTuple):
    trusted: int
    favorite: int
    category: int
    available: int


MODE_WEIGHTS: dict[InvolvementMode, Weights] = {
    InvolvementMode.HANDS_OFF: Weights(trusted=200, favorite=150, category=30, available=20),
    InvolvementMode.BALANCED: Weights(trusted=100, favorite=50, category=30, available=20),
    InvolvementMode.HANDS_ON: Weights(trusted=50, favorite=30, category=60, available=40),
}

RATING_WEIGHT = 5
JOBS_COMPLETED_CAP = 10

# rationale tag -> human-readable note, in precedence order
RATIONALE_NOTES = {
    "trusted": "Trusted by your landlord",
    "preferred": "Preferred contractor",
    "specialist": "Specialist match",
    "available": "Available now",
}

CATEGORY_ROOTS: dict[str, tuple[str, ...]] = {
    "electric": ("electrical", "electrician", "electrical & lighting", "wiring", "outlet", "circuit"),
    "plumb": ("plumbing", "plumber", "pipe", "drain", "water"),
    "hvac": ("hvac", "heating", "cooling", "air conditioning", "furnace"),
    "appli": ("appliance", "appliances", "appliance repair"),
    "roof": ("roofing", "roofer", "roof repair", "roof"),
    "paint": ("painting", "painter", "paint"),
    "carpent": ("carpentry", "carpenter", "woodwork"),
    "landscap": ("landscaping", "lawn", "garden"),
    "general": ("general maintenance", "handyman", "general"),
    "garage": ("garage", "garage door", "garage doors"),
}


@dataclass
class ContractorCandidate:
    id: int
    name: str = "Contractor"
    specialties: tuple[str, ...] = ()
    rating: float = 0.0
    jobs_completed: int = 0
    is_available: bool = True
    is_trusted: bool = False
    is_favorite: bool = False
    response_time_hours: int = 24
    emergency_available: bool = False
    profile_image_url: str | None = None
    category_match: bool = field(default=False, compare=False)
    score: float = field(default=0.0, compare=False)

    @property
    def rationale(self) -> str:
        if self.is_trusted:
            return "trusted"
        if self.is_favorite:
            return "preferred"
        if self.category_match:
            return "specialist"
        return "available"

    def to_public(self, rank: int) -> dict:
        """Requester-facing view: no score, no pricing."""
        return {
            "rank": rank,
            "id": self.id,
            "name": self.name,
            "profileImageUrl": self.profile_image_url,
            "specialties": list(self.specialties),
            "rating": self.rating or None,
            "responseTimeHours": self.response_time_hours,
            "emergencyAvailable": self.emergency_available,
            "isTrusted": self.is_trusted,
            "isFavorite": self.is_favorite,
            "jobsCompleted": self.jobs_completed,
            "rationale": self.rationale,
            "mayaNote": RATIONALE_NOTES[self.rationale],
        }


def _synonym_match(a: str, b: str) -> bool:
    for synonyms in CATEGORY_ROOTS.values():
        if any(s in a or a in s for s in synonyms) and any(s in b or b in s for s in synonyms):
            return True
    return False


def matches_category(category: str | None, specialties: Iterable[str], synonyms: bool = False) -> bool:
    """Soft match: substring either way, case-insensitive. No category matches everything."""
    wanted = (category or "").strip().lower()
    if not wanted:
        return True
    for spec in specialties:
        s = (spec or "").strip().lower()
        if not s:
            continue
        if s in wanted or wanted in s:
            return True
        if synonyms and _synonym_match(wanted, s):
            return True
    return False


def score_candidate(candidate: ContractorCandidate, mode: InvolvementMode) -> float:
    w = MODE_WEIGHTS[mode]
    score = 0.0
    if candidate.is_trusted:
        score += w.trusted
    if candidate.is_favorite:
        score += w.favorite
    if candidate.category_match:
        score += w.category
    if candidate.is_available:
        score += w.available
    score += candidate.rating * RATING_WEIGHT
    score += min(candidate.jobs_completed, JOBS_COMPLETED_CAP)
    return score


def rank(
    category: str | None,
    candidates: Iterable[ContractorCandidate],
    policy: ResolvedPolicy,
    limit: int = SHORTLIST_SIZE,
    synonyms: bool = False,
) -> list[ContractorCandidate]:
    """Return at most ``limit`` candidates, best first.

    Unavailable candidates are dropped. In hands-off mode the pool is first
    narrowed to trusted/favorite contractors when any are available. The
    category filter is only a preference: if it would leave nobody, it is
    skipped.
    Equal scores keep pool order.
    """
    mode = policy.involvement_mode
    pool = []
    for c in candidates:
        if not c.is_available:
            continue
        c = replace(c, category_match=matches_category(category, c.specialties, synonyms=synonyms))
        pool.append(replace(c, score=score_candidate(c, mode)))

    # Hands-off narrows to known contractors before the category preference
    if mode is InvolvementMode.HANDS_OFF:
        known = [c for c in pool if c.is_trusted or c.is_favorite]
        if known:
            pool = known

    if category:
        matching = [c for c in pool if c.category_match]
        if matching:
            pool = matching

    # sorted() is stable, so ties stay in pool order
    return sorted(pool, key=lambda c: -c.score)[:limit]


# -----------------
# Database-backed ranking
# -----------------

def build_candidates(session, pool_ids: list[int], trusted: frozenset, favorites: frozenset, link_stats: dict) -> list[ContractorCandidate]:
    if not pool_ids:
        return []
    users = session.execute(
        db.select(User).where(User.id.in_(pool_ids), User.role == "contractor")
    ).scalars().all()
    by_id = {u.id: u for u in users}

    candidates = []
    for uid in pool_ids:  # pool order, not query order
        user = by_id.get(uid)
        if user is None:
            continue
        profile = user.contractor_profile
        link = link_stats.get(uid)
        candidates.append(ContractorCandidate(
            id=user.id,
            name=(user.name or "").strip() or "Contractor",
            specialties=tuple(s.name for s in user.specialties),
            rating=float(link.average_rating) if link is not None and link.average_rating is not None else 0.0,
            jobs_completed=(link.total_jobs_completed or 0) if link is not None else 0,
            is_available=profile.is_available if profile is not None else True,
            is_trusted=uid in trusted,
            is_favorite=uid in favorites,
            response_time_hours=(profile.response_time_hours or 24) if profile is not None else 24,
            emergency_available=bool(profile.emergency_available) if profile is not None else False,
            profile_image_url=profile.profile_image_url if profile is not None else None,
        ))
    return candidates


def rank_candidates(case_id: int, category: str | None = None, org_id: int | None = None, session=None) -> dict:
    session = session or db.session
    case = session.get(Case, case_id)
    if case is None or (org_id is not None and case.org_id != org_id):
        raise NotFound("case", case_id)

    if category is None:
        category = case.category or ""

    resolver = PolicyResolver(session)
    policy = resolver.resolve(case.org_id)
    sets = resolver.contractor_sets(case.org_id, policy)
    pool_ids = sets.candidate_pool()

    limit, synonyms = SHORTLIST_SIZE, False
    if has_app_context():
        limit = current_app.config.get("RANKING_SHORTLIST_SIZE", SHORTLIST_SIZE)
        synonyms = current_app.config.get("RANKING_USE_CATEGORY_SYNONYMS", False)

    candidates = build_candidates(
        session, pool_ids, policy.trusted_set, frozenset(sets.favorites), sets.link_stats
    )
    shortlist = rank(category, candidates, policy, limit=limit, synonyms=synonyms)

    log.info(
        "Ranked case %s (category=%r, mode=%s): %d candidate(s), shortlist=%s",
        case.id, category, policy.involvement_mode.value, len(candidates), [c.id for c in shortlist],
    )
    return {
        "contractors": [c.to_public(i + 1) for i, c in enumerate(shortlist)],
        "involvementMode": policy.involvement_mode.value,
        "totalCandidates": len(candidates),
    }
