# casedesk/services/negotiation.py
"""Quote negotiation: sending, counter-proposals, acceptance and cancellation.

Quote lifecycle:
    draft -> sent -> approved | declined | expired
    draft -> declined
    approved -> cancelled

``declined -> sent|draft`` only happens as the restore step of cancel_approval,
which puts a quote back in the status it held before the decline.

Each operation is a command applied to a CaseProjection and committed as
one transaction. Cases, quotes and counter-proposals are versioned rows,
so when two requests race on the same case the second flush fails and the
caller gets a Conflict. Expiry is lazy: an overdue sent quote is treated as
expired before the sweep has stored it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation

from flask import current_app, has_app_context
from sqlalchemy.orm.exc import StaleDataError

from ..errors import CaseDeskError, Conflict, InvalidTransition, NotFound, ValidationError
from ..extensions import db
from ..models.case import Case, CaseStatus
from ..models.quote import Quote, QuoteStatus, CounterProposal, CounterStatus
from ..timeutil import utcnow
from .actor import Actor
from .case_projection import CaseProjection
from .notifications import (
    MailNotifier,
    NotificationEvent,
    Notifier,
    QUOTE_ACCEPTED,
    QUOTE_DECLINED,
    COUNTER_PROPOSAL_RECEIVED,
)

log = logging.getLogger(__name__)

REVERT_ALL = "all"
REVERT_ACCEPTANCE = "acceptance"

_TRANSITIONS: dict[QuoteStatus, set[QuoteStatus]] = {
    QuoteStatus.DRAFT: {QuoteStatus.SENT, QuoteStatus.DECLINED},
    QuoteStatus.SENT: {QuoteStatus.APPROVED, QuoteStatus.DECLINED, QuoteStatus.EXPIRED},
    QuoteStatus.APPROVED: {QuoteStatus.CANCELLED},
    QuoteStatus.DECLINED: set(),
    QuoteStatus.CANCELLED: set(),
    QuoteStatus.EXPIRED: set(),
}

_VERBS = {
    QuoteStatus.SENT: "send",
    QuoteStatus.APPROVED: "accept",
    QuoteStatus.DECLINED: "decline",
    QuoteStatus.CANCELLED: "cancel",
    QuoteStatus.EXPIRED: "expire",
}


def check_transition(quote: Quote, current: str, target: QuoteStatus) -> None:
    if target not in _TRANSITIONS[QuoteStatus(current)]:
        raise InvalidTransition("quote", quote.id, current, _VERBS[target])


def to_amount(value, field: str = "total") -> Decimal | None:
    """Parse a money amount. No rounding: that is a display concern."""
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value).replace(",", "").replace(" ", ""))
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number", field=field, value=str(value))
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number", field=field, value=str(value))
    if amount < 0:
        raise ValidationError(f"{field} must not be negative", field=field, value=str(value))
    return amount


@dataclass(frozen=True)
class CounterTerms:
    """Revised terms; None means "keep what the quote says"."""
    total: Decimal | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    message: str | None = None

    @classmethod
    def build(cls, total=None, start_date=None, end_date=None, message=None) -> "CounterTerms":
        terms = cls(
            total=to_amount(total, "proposed total"),
            start_date=start_date,
            end_date=end_date,
            message=(message or "").strip() or None,
        )
        terms.validate()
        return terms

    def validate(self) -> None:
        if self.total is None and self.start_date is None and self.end_date is None and not self.message:
            raise ValidationError("A counter-proposal needs a total, a date or a message")
        if self.total is not None and self.total < 0:
            raise ValidationError("proposed total must not be negative", field="proposed total")
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValidationError("Proposed end date is before the start date")


# -----------------
# Commands
# -----------------

class Command:
    """A single all-or-nothing state change over a projection."""

    name = "command"

    def __init__(self, projection: CaseProjection):
        self.projection = projection

    @property
    def now(self) -> datetime:
        return self.projection.now

    def apply(self):
        raise NotImplementedError

    def events(self) -> list[NotificationEvent]:
        """Built after commit, when new rows have their ids."""
        return []


class SendQuote(Command):
    name = "send_quote"

    def __init__(self, projection, quote_id: int):
        super().__init__(projection)
        self.quote = projection.quote(quote_id)

    def apply(self):
        q = self.quote
        check_transition(q, self.projection.status_of(q), QuoteStatus.SENT)
        if q.total is None or q.total < 0:
            raise ValidationError("Quote total must be a non-negative amount", field="total")
        if q.expires_at is not None and q.expires_at <= self.now:
            raise ValidationError("Quote expiry is already in the past", field="expires_at")
        q.status = QuoteStatus.SENT.value
        q.sent_at = self.now
        log.info("Quote %s sent for case %s (total=%s)", q.id, q.case_id, q.total)
        return q


class AcceptQuote(Command):
    """Approve one quote, decline its siblings and assign the case."""

    name = "accept_quote"

    def __init__(self, projection, quote_id: int):
        super().__init__(projection)
        self.quote = projection.quote(quote_id)
        self.auto_declined: list[Quote] = []

    def apply(self):
        p, q, case = self.projection, self.quote, self.projection.case

        others = [a for a in p.approved() if a.id != q.id]
        if others:
            raise Conflict(
                f"Case {case.id} already has an approved quote",
                current=case.status,
                approved_quote_id=others[0].id,
            )
        if case.status != CaseStatus.NEW:
            raise Conflict(f"Case {case.id} is {case.status}, not open for acceptance", current=case.status)

        check_transition(q, p.status_of(q), QuoteStatus.APPROVED)

        q.status = QuoteStatus.APPROVED.value
        q.approved_at = self.now

        for sib in p.siblings(q.id):
            status = p.status_of(sib)
            if status in (QuoteStatus.DRAFT, QuoteStatus.SENT):
                sib.declined_from_status = sib.status
                sib.status = QuoteStatus.DECLINED.value
                sib.declined_at = self.now
                sib.declined_by_acceptance = True
                self.auto_declined.append(sib)
            elif status == QuoteStatus.EXPIRED and sib.status == QuoteStatus.SENT:
                sib.status = QuoteStatus.EXPIRED.value

        case.assigned_contractor_id = q.contractor_id
        case.status = CaseStatus.IN_REVIEW.value
        log.info(
            "Quote %s approved for case %s; contractor %s assigned; auto-declined %s",
            q.id, case.id, q.contractor_id, [s.id for s in self.auto_declined],
        )
        return q

    def events(self):
        q = self.quote
        out = [NotificationEvent(
            kind=QUOTE_ACCEPTED,
            summary=f"Quote #{q.id} ({q.total} {q.currency}) accepted - awaiting contractor confirmation",
            case_id=q.case_id,
            quote_id=q.id,
            recipient_ids=(q.contractor_id,),
        )]
        for sib in self.auto_declined:
            out.append(NotificationEvent(
                kind=QUOTE_DECLINED,
                summary=f"Quote #{sib.id} declined: another quote was accepted",
                case_id=sib.case_id,
                quote_id=sib.id,
                recipient_ids=(sib.contractor_id,),
            ))
        return out


class DeclineQuote(Command):
    name = "decline_quote"

    def __init__(self, projection, quote_id: int, reason: str | None = None):
        super().__init__(projection)
        self.quote = projection.quote(quote_id)
        self.reason = (reason or "").strip() or None

    def apply(self):
        q = self.quote
        check_transition(q, self.projection.status_of(q), QuoteStatus.DECLINED)
        q.declined_from_status = q.status
        q.status = QuoteStatus.DECLINED.value
        q.declined_at = self.now
        q.decline_reason = self.reason
        q.declined_by_acceptance = False
        log.info("Quote %s declined for case %s", q.id, q.case_id)
        return q

    def events(self):
        q = self.quote
        summary = f"Quote #{q.id} declined"
        if self.reason:
            summary += f": {self.reason}"
        return [NotificationEvent(
            kind=QUOTE_DECLINED, summary=summary, case_id=q.case_id, quote_id=q.id,
            recipient_ids=(q.contractor_id,),
        )]


class CancelApproval(Command):
    """Undo an acceptance: reopen the case and put declined siblings back in play."""

    name = "cancel_approval"

    def __init__(self, projection, quote_id: int, revert: str = REVERT_ALL):
        super().__init__(projection)
        self.quote = projection.quote(quote_id)
        self.revert = revert
        self.reverted: list[Quote] = []

    def _should_revert(self, sib: Quote) -> bool:
        if sib.status != QuoteStatus.DECLINED:
            return False
        # "all" cannot tell party declines from acceptance side effects
        return self.revert == REVERT_ALL or sib.declined_by_acceptance

    def apply(self):
        p, q, case = self.projection, self.quote, self.projection.case
        check_transition(q, p.status_of(q), QuoteStatus.CANCELLED)

        q.status = QuoteStatus.CANCELLED.value

        for sib in p.siblings(q.id):
            if self._should_revert(sib):
                # a draft goes back to draft; it was never sent
                sib.status = sib.declined_from_status or QuoteStatus.SENT.value
                sib.declined_from_status = None
                sib.declined_at = None
                sib.decline_reason = None
                sib.declined_by_acceptance = False
                self.reverted.append(sib)

        case.status = CaseStatus.NEW.value
        case.assigned_contractor_id = None
        log.info(
            "Approval of quote %s cancelled; case %s reopened; reverted %s",
            q.id, case.id, [s.id for s in self.reverted],
        )
        return q


class ExpireQuote(Command):
    name = "expire_quote"

    def __init__(self, projection, quote_id: int):
        super().__init__(projection)
        self.quote = projection.quote(quote_id)

    def apply(self):
        q = self.quote
        if q.status == QuoteStatus.SENT and not q.is_past_expiry(self.now):
            raise InvalidTransition(
                "quote", q.id, q.status, "expire", message=f"Quote {q.id} has not reached its expiry"
            )
        check_transition(q, q.status, QuoteStatus.EXPIRED)
        q.status = QuoteStatus.EXPIRED.value
        log.info("Quote %s expired (expires_at=%s)", q.id, q.expires_at)
        return q


def _load_pending_counter(counter: CounterProposal) -> None:
    if counter.status != CounterStatus.PENDING:
        raise InvalidTransition(
            "counter-proposal", counter.id, counter.status, "respond to",
            message=f"Counter-proposal {counter.id} is {counter.status}, not pending",
        )


def _check_responder(counter: CounterProposal, actor: Actor | None) -> None:
    if actor is not None and actor.user_id == counter.proposed_by:
        raise ValidationError("You cannot respond to your own counter-proposal")


class ProposeCounter(Command):
    name = "propose_counter"

    def __init__(self, projection, quote_id: int, actor: Actor, terms: CounterTerms):
        super().__init__(projection)
        if actor is None:
            raise ValidationError("A counter-proposal needs a proposer")
        self.quote = projection.quote(quote_id)
        self.actor = actor
        self.terms = terms
        self.counter: CounterProposal | None = None

    def _supersede_pending(self):
        for cp in self.quote.counter_proposals:
            if cp.status == CounterStatus.PENDING:
                cp.status = CounterStatus.SUPERSEDED.value
                cp.responded_at = self.now
                cp.responded_by = self.actor.user_id

    def apply(self):
        q = self.quote
        current = self.projection.status_of(q)
        if current != QuoteStatus.SENT:
            raise InvalidTransition("quote", q.id, current, "counter")
        self.terms.validate()

        self._supersede_pending()
        self.counter = CounterProposal(
            proposed_by=self.actor.user_id,
            proposed_by_role=self.actor.role,
            proposed_total=self.terms.total,
            proposed_start_date=self.terms.start_date,
            proposed_end_date=self.terms.end_date,
            message=self.terms.message,
            status=CounterStatus.PENDING.value,
            created_at=self.now,
        )
        q.counter_proposals.append(self.counter)
        q.has_counter_proposal = True
        q.counter_proposal_count = (q.counter_proposal_count or 0) + 1
        log.info(
            "Counter-proposal on quote %s by %s %s (total=%s)",
            q.id, self.actor.role, self.actor.user_id, self.terms.total,
        )
        return self.counter

    def _recipient_ids(self) -> tuple[int, ...]:
        q, case = self.quote, self.projection.case
        if self.actor.is_contractor:
            return (case.reporter_user_id,) if case.reporter_user_id else ()
        return (q.contractor_id,)

    def events(self):
        q, cp = self.quote, self.counter
        parts = []
        if cp.proposed_total is not None:
            parts.append(f"total {cp.proposed_total}")
        if cp.proposed_start_date or cp.proposed_end_date:
            parts.append("new dates")
        summary = f"Counter-proposal from the {cp.proposed_by_role}"
        if parts:
            summary += ": " + ", ".join(parts)
        if cp.message:
            summary += f" - {cp.message}"
        return [NotificationEvent(
            kind=COUNTER_PROPOSAL_RECEIVED,
            summary=summary,
            case_id=q.case_id,
            quote_id=q.id,
            counter_proposal_id=cp.id,
            recipient_ids=self._recipient_ids(),
        )]


class CounterTheCounter(ProposeCounter):
    """Reply in kind: the pending counter is superseded by the responder's terms."""

    name = "counter_the_counter"

    def __init__(self, projection, counter: CounterProposal, actor: Actor, terms: CounterTerms):
        super().__init__(projection, counter.quote_id, actor, terms)
        self.original = counter

    def apply(self):
        _load_pending_counter(self.original)
        _check_responder(self.original, self.actor)
        counter = super().apply()
        self.original.response_message = "Counter-offered with new terms"
        return counter


class AcceptCounter(Command):
    """Amend the quote with the counter's terms. The quote stays sent."""

    name = "accept_counter"

    def __init__(self, projection, counter: CounterProposal, actor: Actor | None):
        super().__init__(projection)
        self.counter = counter
        self.quote = projection.quote(counter.quote_id)
        self.actor = actor

    def apply(self):
        cp, q = self.counter, self.quote
        _load_pending_counter(cp)
        _check_responder(cp, self.actor)
        current = self.projection.status_of(q)
        if current != QuoteStatus.SENT:
            raise InvalidTransition("quote", q.id, current, "accept a counter-proposal on")

        cp.status = CounterStatus.ACCEPTED.value
        cp.responded_at = self.now
        cp.responded_by = self.actor.user_id if self.actor else None

        if cp.proposed_total is not None:
            q.total = cp.proposed_total
        if cp.proposed_start_date is not None:
            q.available_start_date = cp.proposed_start_date
        if cp.proposed_end_date is not None:
            q.available_end_date = cp.proposed_end_date
        q.has_counter_proposal = False
        log.info("Counter-proposal %s accepted; quote %s total now %s", cp.id, q.id, q.total)
        return q


class DeclineCounter(Command):
    name = "decline_counter"

    def __init__(self, projection, counter: CounterProposal, actor: Actor | None, reason: str | None = None):
        super().__init__(projection)
        self.counter = counter
        self.quote = projection.quote(counter.quote_id)
        self.actor = actor
        self.reason = (reason or "").strip() or None

    def apply(self):
        cp = self.counter
        _load_pending_counter(cp)
        _check_responder(cp, self.actor)
        cp.status = CounterStatus.DECLINED.value
        cp.responded_at = self.now
        cp.responded_by = self.actor.user_id if self.actor else None
        cp.response_message = self.reason
        self.quote.has_counter_proposal = False
        log.info("Counter-proposal %s on quote %s declined", cp.id, self.quote.id)
        return cp


# -----------------
# Engine
# -----------------

class QuoteNegotiationEngine:
    def __init__(self, session=None, notifier: Notifier | None = None, clock=utcnow, revert: str = REVERT_ALL):
        if revert not in (REVERT_ALL, REVERT_ACCEPTANCE):
            raise ValueError(f"Unknown cancel revert mode: {revert!r}")
        self.session = session or db.session
        self.notifier = notifier or MailNotifier()
        self.clock = clock
        self.revert = revert

    # ---- plumbing ----

    def execute(self, command: Command):
        """Apply ``command`` and commit it, or roll everything back."""
        case_id = command.projection.case.id
        try:
            result = command.apply()
            self.session.commit()
        except StaleDataError as e:
            self.session.rollback()
            log.warning("%s lost a race on case %s: %s", command.name, case_id, e)
            raise Conflict(
                "The case changed while this request was in flight; refresh and retry",
                case_id=case_id,
            ) from e
        except CaseDeskError as e:
            self.session.rollback()
            log.warning("%s rejected: %s", command.name, e.message)
            raise
        except Exception:
            self.session.rollback()
            raise

        for event in command.events():
            self.notifier.notify(event)
        return result

    def _projection(self, case_id: int, actor: Actor | None = None) -> CaseProjection:
        org_id = actor.org_id if actor is not None and not actor.is_contractor else None
        return CaseProjection.load(self.session, case_id, org_id=org_id, now=self.clock())

    def _visible_quote(self, projection: CaseProjection, quote_id: int, actor: Actor | None) -> Quote:
        q = projection.quote(quote_id)
        if actor is not None and actor.is_contractor and q.contractor_id != actor.user_id:
            raise NotFound("quote", quote_id)
        return q

    def _for_quote(self, quote_id: int, actor: Actor | None) -> CaseProjection:
        quote = self.session.get(Quote, quote_id)
        if quote is None:
            raise NotFound("quote", quote_id)
        projection = self._projection(quote.case_id, actor)
        self._visible_quote(projection, quote_id, actor)
        return projection

    def _for_counter(self, counter_id: int, actor: Actor | None) -> tuple[CaseProjection, CounterProposal]:
        counter = self.session.get(CounterProposal, counter_id)
        if counter is None:
            raise NotFound("counter-proposal", counter_id)
        try:
            projection = self._for_quote(counter.quote_id, actor)
        except NotFound:
            raise NotFound("counter-proposal", counter_id)
        # The projection reloaded the quote; use the counter it holds
        quote = projection.quote(counter.quote_id)
        counter = next(cp for cp in quote.counter_proposals if cp.id == counter_id)
        return projection, counter

    # ---- quotes ----

    def create_quote(self, case_id: int, actor: Actor, total, currency: str = "USD", message: str | None = None,
                     available_start_date: datetime | None = None, available_end_date: datetime | None = None,
                     expires_at: datetime | None = None) -> Quote:
        if actor is None or not actor.is_contractor:
            raise ValidationError("Only contractors can create quotes")
        amount = to_amount(total)
        if amount is None:
            raise ValidationError("total is required", field="total")
        if available_start_date and available_end_date and available_end_date < available_start_date:
            raise ValidationError("Available end date is before the start date")

        case = self.session.get(Case, case_id)
        if case is None:
            raise NotFound("case", case_id)
        if case.status != CaseStatus.NEW:
            raise InvalidTransition(
                "case", case.id, case.status, "quote",
                message=f"Case {case.id} is {case.status} and no longer takes quotes",
            )

        quote = Quote(
            case_id=case.id,
            contractor_id=actor.user_id,
            total=amount,
            currency=(currency or "USD").upper(),
            message=(message or "").strip() or None,
            available_start_date=available_start_date,
            available_end_date=available_end_date,
            expires_at=expires_at,
            status=QuoteStatus.DRAFT.value,
            created_at=self.clock(),
        )
        self.session.add(quote)
        self.session.commit()
        log.info("Draft quote %s created for case %s by contractor %s", quote.id, case.id, actor.user_id)
        return quote

    def send_quote(self, quote_id: int, actor: Actor | None = None) -> Quote:
        return self.execute(SendQuote(self._for_quote(quote_id, actor), quote_id))

    def accept_quote(self, case_id: int, quote_id: int, actor: Actor | None = None) -> Quote:
        return self.execute(AcceptQuote(self._projection(case_id, actor), quote_id))

    def decline_quote(self, case_id: int, quote_id: int, actor: Actor | None = None, reason: str | None = None) -> Quote:
        return self.execute(DeclineQuote(self._projection(case_id, actor), quote_id, reason))

    def cancel_approval(self, case_id: int, quote_id: int, actor: Actor | None = None) -> Quote:
        return self.execute(CancelApproval(self._projection(case_id, actor), quote_id, revert=self.revert))

    def expire(self, quote_id: int) -> Quote:
        return self.execute(ExpireQuote(self._for_quote(quote_id, None), quote_id))

    def expire_due(self) -> list[int]:
        """Store the expiry of every overdue sent quote. Returns their ids."""
        now = self.clock()
        overdue = self.session.execute(
            db.select(Quote).filter(
                Quote.status == QuoteStatus.SENT.value,
                Quote.expires_at.is_not(None),
                Quote.expires_at < now,
                Quote.archived_at.is_(None),
            ).order_by(Quote.id)
        ).scalars().all()
        for q in overdue:
            q.status = QuoteStatus.EXPIRED.value
        try:
            self.session.commit()
        except StaleDataError as e:
            self.session.rollback()
            raise Conflict("Quotes changed during the expiry sweep; run it again") from e
        ids = [q.id for q in overdue]
        if ids:
            log.info("Expired %d overdue quote(s): %s", len(ids), ids)
        return ids

    # ---- counter-proposals ----

    def propose_counter(self, quote_id: int, actor: Actor, terms: CounterTerms) -> CounterProposal:
        return self.execute(ProposeCounter(self._for_quote(quote_id, actor), quote_id, actor, terms))

    def accept_counter(self, counter_id: int, actor: Actor | None = None) -> Quote:
        projection, counter = self._for_counter(counter_id, actor)
        return self.execute(AcceptCounter(projection, counter, actor))

    def decline_counter(self, counter_id: int, actor: Actor | None = None, reason: str | None = None) -> CounterProposal:
        projection, counter = self._for_counter(counter_id, actor)
        return self.execute(DeclineCounter(projection, counter, actor, reason))

    def counter_the_counter(self, counter_id: int, actor: Actor, terms: CounterTerms) -> CounterProposal:
        projection, counter = self._for_counter(counter_id, actor)
        return self.execute(CounterTheCounter(projection, counter, actor, terms))

    # ---- reads ----

    def case_quotes(self, case_id: int, actor: Actor | None = None) -> CaseProjection:
        return self._projection(case_id, actor)

    def pending_counters_for_contractor(self, contractor_id: int) -> list[Quote]:
        return self.session.execute(
            db.select(Quote)
            .join(CounterProposal, CounterProposal.quote_id == Quote.id)
            .filter(
                Quote.contractor_id == contractor_id,
                Quote.archived_at.is_(None),
                CounterProposal.status == CounterStatus.PENDING.value,
                CounterProposal.proposed_by != contractor_id,
            )
            .order_by(CounterProposal.created_at.desc())
        ).unique().scalars().all()

    def pending_responses_for_org(self, org_id: int) -> list[Quote]:
        """Quotes of the org's cases with a contractor counter awaiting a reply."""
        return self.session.execute(
            db.select(Quote)
            .join(Case, Case.id == Quote.case_id)
            .join(CounterProposal, CounterProposal.quote_id == Quote.id)
            .filter(
                Case.org_id == org_id,
                Quote.archived_at.is_(None),
                CounterProposal.status == CounterStatus.PENDING.value,
                CounterProposal.proposed_by_role == "contractor",
            )
            .order_by(CounterProposal.created_at.desc())
        ).unique().scalars().all()


def negotiation_engine(notifier: Notifier | None = None) -> QuoteNegotiationEngine:
    """Engine wired to the request's session and app config."""
    revert = REVERT_ALL
    if has_app_context():
        revert = current_app.config.get("QUOTE_CANCEL_REVERT", REVERT_ALL)
    return QuoteNegotiationEngine(session=db.session, notifier=notifier, revert=revert)
