# casedesk/blueprints/cases/routes.py
from flask import jsonify, request
from flask_login import login_required, current_user

from ...security import roles_required, ORG_ROLES
from ...services.actor import Actor
from ...services.cases import create_case
from ...services.case_projection import quote_to_dict
from ...services.negotiation import negotiation_engine
from ...services.ranking import rank_candidates
from . import cases_bp


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict() or {}


def _org_actor() -> Actor:
    return Actor.from_user(current_user)


# -----------------
# Create / view
# -----------------

@cases_bp.post("")
@login_required
@roles_required("org_admin", "property_owner", "tenant")
def case_create():
    data = _payload()
    case = create_case(
        org_id=current_user.org_id,
        title=data.get("title"),
        category=data.get("category"),
        description=data.get("description"),
        reporter_user_id=current_user.id,
    )
    return jsonify(id=case.id, status=case.status, category=case.category), 201


@cases_bp.get("/<int:case_id>/quotes")
@login_required
@roles_required(*ORG_ROLES)
def case_quotes(case_id):
    projection = negotiation_engine().case_quotes(case_id, _org_actor())
    return jsonify(projection.to_dict())


# -----------------
# Contractor shortlist
# -----------------

@cases_bp.get("/<int:case_id>/recommendations")
@login_required
@roles_required("org_admin", "property_owner", "tenant")
def case_recommendations(case_id):
    # ?category= overrides the case's own category; an empty value matches everyone
    category = request.args.get("category")
    return jsonify(rank_candidates(case_id, category=category, org_id=current_user.org_id))


# -----------------
# Quotes → Accept / Decline / Cancel
# -----------------

@cases_bp.post("/<int:case_id>/quotes/<int:quote_id>/accept")
@login_required
@roles_required(*ORG_ROLES)
def quote_accept(case_id, quote_id):
    q = negotiation_engine().accept_quote(case_id, quote_id, _org_actor())
    return jsonify(success=True, message="Quote accepted - awaiting contractor confirmation", quote=quote_to_dict(q))


@cases_bp.post("/<int:case_id>/quotes/<int:quote_id>/decline")
@login_required
@roles_required(*ORG_ROLES)
def quote_decline(case_id, quote_id):
    reason = _payload().get("reason")
    q = negotiation_engine().decline_quote(case_id, quote_id, _org_actor(), reason=reason)
    return jsonify(success=True, message="Quote declined", quote=quote_to_dict(q))


@cases_bp.post("/<int:case_id>/quotes/<int:quote_id>/cancel")
@login_required
@roles_required(*ORG_ROLES)
def quote_cancel(case_id, quote_id):
    q = negotiation_engine().cancel_approval(case_id, quote_id, _org_actor())
    return jsonify(success=True, message="Acceptance cancelled", quote=quote_to_dict(q))
