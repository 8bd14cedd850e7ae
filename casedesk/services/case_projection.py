# casedesk/services/case_projection.py
"""Snapshot of a case and its live quotes.

The negotiation commands validate and mutate against one projection, so
a decision and its writes are based on the same view of the case. The
entities stay attached to the session: a concurrent writer that got there
first makes the flush fail on the version check.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..errors import NotFound
from ..extensions import db
from ..models.case import Case
from ..models.quote import Quote, QuoteStatus, CounterProposal
from ..timeutil import utcnow


def effective_status(quote: Quote, now: datetime) -> str:
    """Stored status, with overdue sent quotes reported as expired."""
    if quote.status == QuoteStatus.SENT and quote.is_past_expiry(now):
        return QuoteStatus.EXPIRED.value
    return quote.status


def _iso(dt):
    return dt.isoformat() if dt else None


def _money(value):
    return str(value) if value is not None else None


def counter_to_dict(cp: CounterProposal) -> dict:
    return {
        "id": cp.id,
        "quoteId": cp.quote_id,
        "proposedBy": cp.proposed_by,
        "proposedByRole": cp.proposed_by_role,
        "proposedTotal": _money(cp.proposed_total),
        "proposedStartDate": _iso(cp.proposed_start_date),
        "proposedEndDate": _iso(cp.proposed_end_date),
        "message": cp.message,
        "status": cp.status,
        "respondedAt": _iso(cp.responded_at),
        "respondedBy": cp.responded_by,
        "responseMessage": cp.response_message,
        "createdAt": _iso(cp.created_at),
    }


def quote_to_dict(q: Quote, now: datetime | None = None) -> dict:
    now = now or utcnow()
    contractor = q.contractor
    return {
        "id": q.id,
        "caseId": q.case_id,
        "contractorId": q.contractor_id,
        "contractorName": contractor.name if contractor else "Unknown Contractor",
        "total": _money(q.total),
        "currency": q.currency,
        "message": q.message,
        "availableStartDate": _iso(q.available_start_date),
        "availableEndDate": _iso(q.available_end_date),
        "expiresAt": _iso(q.expires_at),
        "status": effective_status(q, now),
        "sentAt": _iso(q.sent_at),
        "approvedAt": _iso(q.approved_at),
        "declinedAt": _iso(q.declined_at),
        "hasCounterProposal": q.has_counter_proposal,
        "counterProposalCount": q.counter_proposal_count,
        "counterProposals": [counter_to_dict(cp) for cp in q.counter_proposals],
        "createdAt": _iso(q.created_at),
    }


@dataclass
class CaseProjection:
    case: Case
    quotes: list[Quote]
    now: datetime

    @classmethod
    def load(cls, session, case_id: int, org_id: int | None = None, now: datetime | None = None) -> "CaseProjection":
        # populate_existing: re-read even if the session already holds these rows
        case = session.get(Case, case_id, populate_existing=True)
        if case is None or (org_id is not None and case.org_id != org_id):
            raise NotFound("case", case_id)
        quotes = session.execute(
            db.select(Quote)
            .filter(Quote.case_id == case.id, Quote.archived_at.is_(None))
            .order_by(Quote.created_at.desc(), Quote.id.desc())
            .execution_options(populate_existing=True)
        ).scalars().all()
        return cls(case=case, quotes=list(quotes), now=now or utcnow())

    def quote(self, quote_id: int) -> Quote:
        for q in self.quotes:
            if q.id == quote_id:
                return q
        raise NotFound("quote", quote_id)

    def status_of(self, quote: Quote) -> str:
        return effective_status(quote, self.now)

    def siblings(self, quote_id: int) -> list[Quote]:
        return [q for q in self.quotes if q.id != quote_id]

    def approved(self) -> list[Quote]:
        return [q for q in self.quotes if q.status == QuoteStatus.APPROVED]

    def to_dict(self) -> dict:
        return {
            "case": {
                "id": self.case.id,
                "title": self.case.title,
                "category": self.case.category,
                "status": self.case.status,
                "assignedContractorId": self.case.assigned_contractor_id,
            },
            "quotes": [quote_to_dict(q, self.now) for q in self.quotes],
        }
