# casedesk/services/notifications.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from flask import current_app, has_app_context

from ..models.user import User
from .email_service import send_email

log = logging.getLogger(__name__)

CASE_CREATED = "case-created"
QUOTE_ACCEPTED = "quote-accepted"
QUOTE_DECLINED = "quote-declined"
COUNTER_PROPOSAL_RECEIVED = "counter-proposal-received"

_SUBJECTS = {
    CASE_CREATED: "New service case #{case_id}",
    QUOTE_ACCEPTED: "Your quote for case #{case_id} was accepted",
    QUOTE_DECLINED: "Your quote for case #{case_id} was declined",
    COUNTER_PROPOSAL_RECEIVED: "Counter-proposal on quote #{quote_id}",
}


@dataclass(frozen=True)
class NotificationEvent:
    kind: str
    summary: str
    case_id: int | None = None
    quote_id: int | None = None
    counter_proposal_id: int | None = None
    recipient_ids: tuple[int, ...] = field(default=())


class Notifier:
    """Receives events after the transaction that produced them has committed."""

    def notify(self, event: NotificationEvent) -> None:
        raise NotImplementedError


class MailNotifier(Notifier):
    def notify(self, event: NotificationEvent) -> None:
        log.info(
            "event=%s case=%s quote=%s counter=%s: %s",
            event.kind, event.case_id, event.quote_id, event.counter_proposal_id, event.summary,
        )
        if not has_app_context() or not current_app.config.get("NOTIFY_BY_EMAIL", True):
            return
        if not event.recipient_ids:
            return

        recipients = User.query.filter(User.id.in_(event.recipient_ids)).order_by(User.id).all()
        emails = [u.email for u in recipients]
        subject = _SUBJECTS.get(event.kind, "CaseDesk update").format(
            case_id=event.case_id, quote_id=event.quote_id
        )
        send_email(
            to=[e for e in emails if e],
            subject=subject,
            template=f"{event.kind}.txt",
            event=event,
        )
