# casedesk/models/quote.py
import enum
from ..extensions import db
from ..timeutil import utcnow


class QuoteStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    APPROVED = "approved"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class CounterStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    SUPERSEDED = "superseded"


class Quote(db.Model):
    __tablename__ = "quote"

    id = db.Column(db.Integer, primary_key=True)
    case_id = db.Column(db.Integer, db.ForeignKey("service_case.id"), nullable=False, index=True)
    contractor_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)

    total = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(10), default="USD")
    message = db.Column(db.Text)
    available_start_date = db.Column(db.DateTime)
    available_end_date = db.Column(db.DateTime)
    expires_at = db.Column(db.DateTime, index=True)

    status = db.Column(db.String(20), default=QuoteStatus.DRAFT.value, nullable=False, index=True)
    sent_at = db.Column(db.DateTime)
    approved_at = db.Column(db.DateTime)
    declined_at = db.Column(db.DateTime)
    decline_reason = db.Column(db.Text)
    # True when the decline was a side effect of a sibling quote being accepted
    declined_by_acceptance = db.Column(db.Boolean, default=False, nullable=False)
    # Status held before the decline; cancel_approval restores it
    declined_from_status = db.Column(db.String(20))
    archived_at = db.Column(db.DateTime, index=True)

    has_counter_proposal = db.Column(db.Boolean, default=False, nullable=False, index=True)
    counter_proposal_count = db.Column(db.Integer, default=0, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False)

    case = db.relationship("Case", back_populates="quotes")
    contractor = db.relationship("User", foreign_keys=[contractor_id], lazy="joined")
    counter_proposals = db.relationship(
        "CounterProposal",
        back_populates="quote",
        lazy="selectin",
        order_by="CounterProposal.id",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def is_past_expiry(self, now) -> bool:
        return self.expires_at is not None and now > self.expires_at

    @property
    def pending_counter(self):
        """Most recent pending counter-proposal, the only actionable one."""
        pending = [cp for cp in self.counter_proposals if cp.status == CounterStatus.PENDING]
        return pending[-1] if pending else None

    def __repr__(self):
        return f"<Quote {self.id} case={self.case_id} {self.status!r} total={self.total}>"


class CounterProposal(db.Model):
    __tablename__ = "quote_counter_proposal"

    id = db.Column(db.Integer, primary_key=True)
    quote_id = db.Column(db.Integer, db.ForeignKey("quote.id"), nullable=False, index=True)

    proposed_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    proposed_by_role = db.Column(db.String(20), nullable=False)  # landlord|owner|contractor

    # None means "no change" for each term
    proposed_total = db.Column(db.Numeric(12, 2))
    proposed_start_date = db.Column(db.DateTime)
    proposed_end_date = db.Column(db.DateTime)
    message = db.Column(db.Text)

    status = db.Column(db.String(20), default=CounterStatus.PENDING.value, nullable=False, index=True)
    responded_at = db.Column(db.DateTime)
    responded_by = db.Column(db.Integer, db.ForeignKey("user.id"))
    response_message = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    version_id = db.Column(db.Integer, nullable=False)

    quote = db.relationship("Quote", back_populates="counter_proposals")
    proposer = db.relationship("User", foreign_keys=[proposed_by], lazy="joined")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self):
        return f"<CounterProposal {self.id} quote={self.quote_id} {self.status!r}>"
