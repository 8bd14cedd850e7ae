"""Contractor shortlist: scoring, filtering and the database-backed lookup."""

import pytest

from casedesk.errors import NotFound
from casedesk.services.policy_resolver import InvolvementMode, ResolvedPolicy
from casedesk.services.ranking import (
    ContractorCandidate,
    matches_category,
    rank,
    rank_candidates,
    score_candidate,
)


def _policy(mode: InvolvementMode, trusted=()) -> ResolvedPolicy:
    return ResolvedPolicy(involvement_mode=mode, trusted_contractor_ids=tuple(trusted))


def _candidate(cid: int, **kw) -> ContractorCandidate:
    kw.setdefault("name", f"Contractor {cid}")
    return ContractorCandidate(id=cid, **kw)


class TestCategoryMatch:
    def test_substring_either_way(self) -> None:
        assert matches_category("Plumbing", ["plumb"])
        assert matches_category("plumb", ["Plumbing & Heating"])

    def test_case_insensitive(self) -> None:
        assert matches_category("ELECTRICAL", ["electrical"])

    def test_no_match(self) -> None:
        assert not matches_category("Plumbing", ["Electrical", "Roofing"])

    def test_empty_category_matches_everyone(self) -> None:
        assert matches_category("", ["Roofing"])
        assert matches_category(None, [])

    def test_synonyms_only_when_enabled(self) -> None:
        assert not matches_category("Plumbing", ["Pipe repair"])
        assert matches_category("Plumbing", ["Pipe repair"], synonyms=True)


class TestScoring:
    def test_balanced_score(self) -> None:
        c = _candidate(1, is_trusted=True, category_match=True, rating=4.0, jobs_completed=15)
        # trusted 100 + category 30 + available 20 + rating 20 + capped jobs 10
        assert score_candidate(c, InvolvementMode.BALANCED) == pytest.approx(180.0)

    def test_hands_off_favors_trust(self) -> None:
        trusted = _candidate(1, is_trusted=True)
        specialist = _candidate(2, category_match=True, rating=5.0, jobs_completed=10)
        mode = InvolvementMode.HANDS_OFF
        assert score_candidate(trusted, mode) > score_candidate(specialist, mode)

    def test_hands_on_favors_category(self) -> None:
        favorite = _candidate(1, is_favorite=True)
        specialist = _candidate(2, category_match=True)
        mode = InvolvementMode.HANDS_ON
        assert score_candidate(specialist, mode) > score_candidate(favorite, mode)

    def test_jobs_completed_capped(self) -> None:
        few = _candidate(1, jobs_completed=10)
        many = _candidate(2, jobs_completed=250)
        mode = InvolvementMode.BALANCED
        assert score_candidate(few, mode) == score_candidate(many, mode)


class TestRank:
    def test_hands_off_keeps_only_trusted_when_nothing_matches(self) -> None:
        pool = [
            _candidate(1, specialties=("Electrical",), rating=4.9, jobs_completed=40),
            _candidate(2, specialties=("Roofing",), rating=4.5, jobs_completed=8),
            _candidate(3, specialties=("Painting",), rating=4.8, jobs_completed=10, is_trusted=True),
            _candidate(4, specialties=("HVAC",), rating=3.9, jobs_completed=2),
            _candidate(5, specialties=("Carpentry",), rating=4.1, jobs_completed=6),
        ]
        result = rank("Plumbing", pool, _policy(InvolvementMode.HANDS_OFF, trusted=[3]))

        assert [c.id for c in result] == [3]
        assert result[0].rationale == "trusted"

    def test_hands_off_prefers_known_over_category(self) -> None:
        pool = [
            _candidate(1, specialties=("Electrical",), is_trusted=True),
            _candidate(2, specialties=("Plumbing",), rating=5.0, jobs_completed=10),
            _candidate(3, specialties=("Roofing",), is_favorite=True),
        ]
        result = rank("Plumbing", pool, _policy(InvolvementMode.HANDS_OFF, trusted=[1]))

        assert [c.id for c in result] == [1, 3]
        assert all(c.is_trusted or c.is_favorite for c in result)

    def test_hands_off_category_still_orders_known(self) -> None:
        pool = [
            _candidate(1, specialties=("Electrical",), is_favorite=True),
            _candidate(2, specialties=("Plumbing",), is_favorite=True),
            _candidate(3, specialties=("Plumbing",)),
        ]
        result = rank("Plumbing", pool, _policy(InvolvementMode.HANDS_OFF))
        assert [c.id for c in result] == [2]

    def test_hands_off_without_known_contractors_ranks_everyone(self) -> None:
        pool = [_candidate(i, rating=float(i)) for i in range(1, 5)]
        result = rank("", pool, _policy(InvolvementMode.HANDS_OFF))
        assert [c.id for c in result] == [4, 3, 2]

    def test_category_filter_applies_when_someone_matches(self) -> None:
        pool = [
            _candidate(1, specialties=("Electrical",), rating=5.0, jobs_completed=10),
            _candidate(2, specialties=("Plumbing",)),
        ]
        result = rank("Plumbing", pool, _policy(InvolvementMode.BALANCED))
        assert [c.id for c in result] == [2]
        assert result[0].rationale == "specialist"

    def test_category_filter_falls_back_when_nobody_matches(self) -> None:
        pool = [
            _candidate(1, specialties=("Electrical",)),
            _candidate(2, specialties=("Roofing",)),
        ]
        result = rank("Plumbing", pool, _policy(InvolvementMode.BALANCED))
        assert {c.id for c in result} == {1, 2}
        assert all(c.rationale == "available" for c in result)

    def test_unavailable_never_returned(self) -> None:
        pool = [
            _candidate(1, is_available=False, is_trusted=True, rating=5.0),
            _candidate(2),
        ]
        result = rank("", pool, _policy(InvolvementMode.HANDS_OFF, trusted=[1]))
        assert [c.id for c in result] == [2]

    def test_at_most_limit(self) -> None:
        pool = [_candidate(i) for i in range(1, 8)]
        assert len(rank("", pool, _policy(InvolvementMode.BALANCED))) == 3
        assert len(rank("", pool, _policy(InvolvementMode.BALANCED), limit=5)) == 5

    def test_ties_keep_pool_order(self) -> None:
        pool = [_candidate(7), _candidate(3), _candidate(5)]
        result = rank("", pool, _policy(InvolvementMode.BALANCED))
        assert [c.id for c in result] == [7, 3, 5]

    def test_same_input_same_output(self) -> None:
        pool = [
            _candidate(1, specialties=("Plumbing",), rating=3.0),
            _candidate(2, is_favorite=True),
            _candidate(3, specialties=("Plumbing",), is_trusted=True),
            _candidate(4, specialties=("Plumbing",), jobs_completed=4),
        ]
        policy = _policy(InvolvementMode.BALANCED, trusted=[3])
        first = [(c.id, c.score) for c in rank("Plumbing", pool, policy)]
        second = [(c.id, c.score) for c in rank("Plumbing", pool, policy)]
        assert first == second
        assert first[0][0] == 3

    def test_input_candidates_untouched(self) -> None:
        c = _candidate(1, specialties=("Plumbing",), rating=4.0)
        rank("Plumbing", [c], _policy(InvolvementMode.BALANCED))
        assert c.score == 0.0
        assert c.category_match is False

    def test_empty_pool(self) -> None:
        assert rank("Plumbing", [], _policy(InvolvementMode.BALANCED)) == []


class TestPublicView:
    def test_no_score_or_pricing(self) -> None:
        c = _candidate(1, is_favorite=True, rating=4.2)
        out = c.to_public(1)
        assert "score" not in out
        assert not any("price" in k.lower() for k in out)
        assert out["rank"] == 1
        assert out["rationale"] == "preferred"
        assert out["mayaNote"] == "Preferred contractor"

    def test_unrated_reports_none(self) -> None:
        assert _candidate(1).to_public(2)["rating"] is None

    def test_rationale_precedence(self) -> None:
        c = _candidate(1, is_trusted=True, is_favorite=True, category_match=True)
        assert c.rationale == "trusted"


class TestRankCandidates:
    def test_org_pool_ranking(self, seed) -> None:
        org = seed.org(mode="balanced")
        plumber = seed.contractor("Pat Plumber", specialties=["Plumbing"], link_org=org, rating=4.5, jobs=12)
        sparky = seed.contractor("Sam Sparks", specialties=["Electrical"], link_org=org, rating=5.0, jobs=30)
        fav = seed.contractor("Frankie Fixit", specialties=["Plumbing", "General"], favorite_of=org)
        seed.contractor("Busy Bee", specialties=["Plumbing"], link_org=org, available=False)
        seed.contractor("Stranger", specialties=["Plumbing"])
        case = seed.case(org, category="Plumbing")

        result = rank_candidates(case.id, org_id=org.id)

        ids = [c["id"] for c in result["contractors"]]
        assert ids == [fav.id, plumber.id]
        assert sparky.id not in ids
        assert result["involvementMode"] == "balanced"
        assert result["totalCandidates"] == 4
        assert [c["rank"] for c in result["contractors"]] == [1, 2]

    def test_category_override(self, seed) -> None:
        org = seed.org()
        seed.contractor("Pat Plumber", specialties=["Plumbing"], link_org=org)
        sparky = seed.contractor("Sam Sparks", specialties=["Electrical"], link_org=org)
        case = seed.case(org, category="Plumbing")

        result = rank_candidates(case.id, category="Electrical", org_id=org.id)
        assert [c["id"] for c in result["contractors"]] == [sparky.id]

    def test_trusted_from_policy(self, seed) -> None:
        org = seed.org()
        outside = seed.contractor("Trusted Tom", specialties=["Roofing"])
        seed.contractor("Linked Lee", specialties=["Roofing"], link_org=org, rating=5.0, jobs=10)
        seed.trust(org, outside.id, mode="hands-off")
        case = seed.case(org, category="Roofing")

        result = rank_candidates(case.id, org_id=org.id)
        assert [c["id"] for c in result["contractors"]] == [outside.id]
        assert result["contractors"][0]["rationale"] == "trusted"
        assert result["contractors"][0]["mayaNote"] == "Trusted by your landlord"

    def test_total_counts_contractors_only(self, seed) -> None:
        org = seed.org()
        tenant = seed.user(org, "tenant")
        seed.contractor("Linked Lee", link_org=org)
        seed.trust(org, tenant.id, 9999)
        case = seed.case(org)

        result = rank_candidates(case.id, org_id=org.id)
        assert result["totalCandidates"] == 1
        assert tenant.id not in [c["id"] for c in result["contractors"]]

    def test_other_org_case_not_found(self, seed) -> None:
        org = seed.org()
        other = seed.org("Other Org")
        case = seed.case(org)
        with pytest.raises(NotFound):
            rank_candidates(case.id, org_id=other.id)

    def test_missing_case_not_found(self, app) -> None:
        with pytest.raises(NotFound):
            rank_candidates(9999)

    def test_no_candidates(self, seed) -> None:
        org = seed.org()
        case = seed.case(org)
        assert rank_candidates(case.id) == {"contractors": [], "involvementMode": "balanced", "totalCandidates": 0}
