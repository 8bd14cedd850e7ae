# casedesk/models/organization.py
from ..extensions import db
from ..timeutil import utcnow


class Organization(db.Model):
    __tablename__ = "organization"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)


class ApprovalPolicy(db.Model):
    __tablename__ = "approval_policy"

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organization.id"), nullable=False, index=True)

    involvement_mode = db.Column(db.String(20), default="balanced", nullable=False)  # hands-off|balanced|hands-on
    # Ordered list of contractor user ids
    trusted_contractor_ids = db.Column(db.JSON, default=list)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow)


class FavoriteContractor(db.Model):
    __tablename__ = "favorite_contractor"

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organization.id"), nullable=False, index=True)
    contractor_user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        db.UniqueConstraint("org_id", "contractor_user_id", name="uq_favorite_org_contractor"),
    )


class ContractorOrgLink(db.Model):
    __tablename__ = "contractor_org_link"

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organization.id"), nullable=False, index=True)
    contractor_user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)

    status = db.Column(db.String(20), default="active", index=True)  # active|inactive
    average_rating = db.Column(db.Numeric(3, 2))
    total_jobs_completed = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        db.UniqueConstraint("org_id", "contractor_user_id", name="uq_link_org_contractor"),
    )
