# casedesk/models/user.py
from werkzeug.security import generate_password_hash, check_password_hash
from flask_login import UserMixin
from ..extensions import db
from ..timeutil import utcnow


user_contractor_specialties = db.Table(
    "user_contractor_specialties",
    db.Column("user_id", db.Integer, db.ForeignKey("user.id"), primary_key=True),
    db.Column("specialty_id", db.Integer, db.ForeignKey("contractor_specialty.id"), primary_key=True),
)


class User(UserMixin, db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)

    password_hash = db.Column(db.String(255))

    # org_admin|property_owner|tenant|contractor
    role = db.Column(db.String(20), nullable=False, default="tenant", index=True)

    # Contractors may work for many orgs (see ContractorOrgLink) and usually have none here
    org_id = db.Column(db.Integer, db.ForeignKey("organization.id"), index=True)

    # active|suspended
    status = db.Column(db.String(20), default="active", index=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    organization = db.relationship("Organization", backref=db.backref("members", lazy="selectin"))

    contractor_profile = db.relationship(
        "ContractorProfile",
        backref="user",
        uselist=False,
        cascade="all, delete-orphan",
    )
    specialties = db.relationship(
        "ContractorSpecialty",
        secondary=user_contractor_specialties,
        lazy="selectin",
        order_by="ContractorSpecialty.id",
    )

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return bool(self.password_hash) and check_password_hash(self.password_hash, password)

    @property
    def is_contractor(self) -> bool:
        return self.role == "contractor"

    @property
    def negotiation_role(self) -> str:
        """Party label recorded on counter-proposals."""
        if self.role == "contractor":
            return "contractor"
        if self.role == "property_owner":
            return "owner"
        return "landlord"

    def __repr__(self):
        return f"<User {self.id} {self.email} ({self.role})>"


class ContractorProfile(db.Model):
    __tablename__ = "contractor_profile"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), unique=True, nullable=False, index=True)

    is_available = db.Column(db.Boolean, default=True, nullable=False)
    response_time_hours = db.Column(db.Integer, default=24)
    emergency_available = db.Column(db.Boolean, default=False, nullable=False)
    profile_image_url = db.Column(db.String(500))


class ContractorSpecialty(db.Model):
    __tablename__ = "contractor_specialty"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), unique=True, nullable=False)
