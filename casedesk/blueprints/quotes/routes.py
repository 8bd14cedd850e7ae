# casedesk/blueprints/quotes/routes.py
from datetime import datetime, timezone
from typing import Optional

from flask import jsonify, request
from flask_login import login_required, current_user

from ...errors import ValidationError
from ...security import roles_required, ORG_ROLES
from ...services.actor import Actor
from ...services.case_projection import counter_to_dict, quote_to_dict
from ...services.negotiation import CounterTerms, negotiation_engine
from . import quotes_bp


# -----------------
# Helpers
# -----------------

def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict() or {}


def _parse_dt(data: dict, key: str) -> Optional[datetime]:
    raw = data.get(key)
    if not raw:
        return None
    try:
        # Accept both YYYY-MM-DD and full ISO strings
        dt = datetime.fromisoformat(str(raw).strip())
    except ValueError:
        raise ValidationError(f"{key} must be an ISO date", field=key, value=str(raw))
    # Stored timestamps are naive UTC
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _terms(data: dict) -> CounterTerms:
    return CounterTerms.build(
        total=data.get("proposedTotal"),
        start_date=_parse_dt(data, "proposedStartDate"),
        end_date=_parse_dt(data, "proposedEndDate"),
        message=data.get("message"),
    )


def _actor() -> Actor:
    return Actor.from_user(current_user)


# -----------------
# Contractor: create / send
# -----------------

@quotes_bp.post("/quotes")
@login_required
@roles_required("contractor")
def quote_create():
    data = _payload()
    try:
        case_id = int(data.get("caseId"))
    except (TypeError, ValueError):
        raise ValidationError("caseId is required", field="caseId")

    q = negotiation_engine().create_quote(
        case_id,
        _actor(),
        total=data.get("total"),
        currency=data.get("currency") or "USD",
        message=data.get("message"),
        available_start_date=_parse_dt(data, "availableStartDate"),
        available_end_date=_parse_dt(data, "availableEndDate"),
        expires_at=_parse_dt(data, "expiresAt"),
    )
    return jsonify(quote_to_dict(q)), 201


@quotes_bp.post("/quotes/<int:quote_id>/send")
@login_required
@roles_required("contractor")
def quote_send(quote_id):
    q = negotiation_engine().send_quote(quote_id, _actor())
    return jsonify(success=True, message="Quote sent", quote=quote_to_dict(q))


# -----------------
# Counter-proposals (either party)
# -----------------

@quotes_bp.post("/quotes/<int:quote_id>/counter")
@login_required
@roles_required("contractor", *ORG_ROLES)
def quote_counter(quote_id):
    cp = negotiation_engine().propose_counter(quote_id, _actor(), _terms(_payload()))
    return jsonify(success=True, counterProposal=counter_to_dict(cp), message="Counter-proposal sent"), 201


@quotes_bp.get("/quotes/pending-responses")
@login_required
@roles_required(*ORG_ROLES)
def pending_responses():
    quotes = negotiation_engine().pending_responses_for_org(current_user.org_id)
    return jsonify([quote_to_dict(q) for q in quotes])


@quotes_bp.get("/counter-proposals/pending")
@login_required
@roles_required("contractor")
def counter_proposals_pending():
    quotes = negotiation_engine().pending_counters_for_contractor(current_user.id)
    return jsonify([quote_to_dict(q) for q in quotes])


@quotes_bp.post("/counter-proposals/<int:counter_id>/accept")
@login_required
@roles_required("contractor", *ORG_ROLES)
def counter_accept(counter_id):
    q = negotiation_engine().accept_counter(counter_id, _actor())
    return jsonify(success=True, message="Counter-proposal accepted", quote=quote_to_dict(q))


@quotes_bp.post("/counter-proposals/<int:counter_id>/decline")
@login_required
@roles_required("contractor", *ORG_ROLES)
def counter_decline(counter_id):
    reason = _payload().get("reason")
    cp = negotiation_engine().decline_counter(counter_id, _actor(), reason=reason)
    return jsonify(success=True, message="Counter-proposal declined", counterProposal=counter_to_dict(cp))


@quotes_bp.post("/counter-proposals/<int:counter_id>/counter")
@login_required
@roles_required("contractor", *ORG_ROLES)
def counter_counter(counter_id):
    cp = negotiation_engine().counter_the_counter(counter_id, _actor(), _terms(_payload()))
    return jsonify(success=True, counterProposal=counter_to_dict(cp), message="Counter-proposal sent"), 201
