# casedesk/services/cases.py
from __future__ import annotations

import logging

from ..errors import ValidationError
from ..extensions import db
from ..models.case import Case, CaseStatus
from ..models.user import User
from .notifications import CASE_CREATED, MailNotifier, NotificationEvent, Notifier

log = logging.getLogger(__name__)


def create_case(org_id: int, title: str, category: str | None = None, description: str | None = None,
                reporter_user_id: int | None = None, session=None, notifier: Notifier | None = None) -> Case:
    """Open a case and tell the organization's admins about it."""
    session = session or db.session
    title = (title or "").strip()
    if not title:
        raise ValidationError("Title is required.", field="title")

    case = Case(
        org_id=org_id,
        reporter_user_id=reporter_user_id,
        title=title,
        category=(category or "").strip() or None,
        description=(description or "").strip() or None,
        status=CaseStatus.NEW.value,
    )
    session.add(case)
    session.commit()
    log.info("Case %s created in org %s (category=%r)", case.id, org_id, case.category)

    admin_ids = session.execute(
        db.select(User.id).filter_by(org_id=org_id, role="org_admin")
    ).scalars().all()
    (notifier or MailNotifier()).notify(NotificationEvent(
        kind=CASE_CREATED,
        summary=f"{case.title} ({case.category or 'uncategorized'})",
        case_id=case.id,
        recipient_ids=tuple(admin_ids),
    ))
    return case
