# casedesk/models/case.py
import enum
from ..extensions import db
from ..timeutil import utcnow


class CaseStatus(str, enum.Enum):
    NEW = "New"
    IN_REVIEW = "In Review"  # quote approved, awaiting contractor confirmation
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CLOSED = "Closed"


class Case(db.Model):
    __tablename__ = "service_case"

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organization.id"), nullable=False, index=True)
    reporter_user_id = db.Column(db.Integer, db.ForeignKey("user.id"), index=True)

    title = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(80), index=True)
    description = db.Column(db.Text)

    status = db.Column(db.String(30), default=CaseStatus.NEW.value, nullable=False, index=True)
    assigned_contractor_id = db.Column(db.Integer, db.ForeignKey("user.id"), index=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # Bumped on every UPDATE; a stale write raises StaleDataError
    version_id = db.Column(db.Integer, nullable=False)

    quotes = db.relationship(
        "Quote",
        back_populates="case",
        lazy="selectin",
        order_by="Quote.id",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self):
        return f"<Case {self.id} {self.status!r}>"
