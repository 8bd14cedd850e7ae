from decimal import Decimal

import pytest
from flask import g

from casedesk import create_app
from casedesk.config import Config
from casedesk.extensions import db
from casedesk.models import (
    ApprovalPolicy,
    Case,
    ContractorOrgLink,
    ContractorProfile,
    ContractorSpecialty,
    FavoriteContractor,
    Organization,
    Quote,
    QuoteStatus,
    User,
)
from casedesk.services.notifications import Notifier


class RecordingNotifier(Notifier):
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)

    def kinds(self):
        return [e.kind for e in self.events]


@pytest.fixture
def app(tmp_path):
    class TestConfig(Config):
        TESTING = True
        SECRET_KEY = "test"
        SQLALCHEMY_DATABASE_URI = "sqlite:///" + str(tmp_path / "casedesk-test.db")
        LOG_DIR = str(tmp_path / "logs")
        LOG_JSON = False
        SENTRY_DSN = ""
        MAIL_SUPPRESS_SEND = True
        MAIL_DEFAULT_SENDER = "noreply@casedesk.test"
        SESSION_COOKIE_SECURE = False
        DEFAULT_INVOLVEMENT_MODE = "balanced"
        RANKING_SHORTLIST_SIZE = 3
        RANKING_USE_CATEGORY_SYNONYMS = False
        QUOTE_CANCEL_REVERT = "all"

    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def notifier():
    return RecordingNotifier()


class Seed:
    """Small factory for rows the tests need."""

    def __init__(self):
        self._n = 0

    def _email(self, prefix):
        self._n += 1
        return f"{prefix}{self._n}@example.com"

    def org(self, name="Acme Lettings", mode=None, trusted=()):
        org = Organization(name=name)
        db.session.add(org)
        db.session.flush()
        if mode is not None:
            db.session.add(ApprovalPolicy(org_id=org.id, involvement_mode=mode, trusted_contractor_ids=list(trusted)))
        db.session.commit()
        return org

    def user(self, org, role="org_admin", name="Olive Admin"):
        user = User(name=name, email=self._email(role), role=role, org_id=org.id if org else None)
        user.set_password("secret")
        db.session.add(user)
        db.session.commit()
        return user

    def contractor(self, name="Casey Contractor", specialties=(), available=True, link_org=None,
                   rating=None, jobs=0, favorite_of=None):
        user = User(name=name, email=self._email("contractor"), role="contractor")
        user.contractor_profile = ContractorProfile(is_available=available)
        for spec in specialties:
            row = db.session.execute(
                db.select(ContractorSpecialty).filter_by(name=spec)
            ).scalar_one_or_none() or ContractorSpecialty(name=spec)
            user.specialties.append(row)
        db.session.add(user)
        db.session.flush()
        if link_org is not None:
            db.session.add(ContractorOrgLink(
                org_id=link_org.id, contractor_user_id=user.id,
                average_rating=rating, total_jobs_completed=jobs,
            ))
        if favorite_of is not None:
            db.session.add(FavoriteContractor(org_id=favorite_of.id, contractor_user_id=user.id))
        db.session.commit()
        return user

    def trust(self, org, *contractor_ids, mode="balanced"):
        policy = db.session.execute(db.select(ApprovalPolicy).filter_by(org_id=org.id)).scalars().first()
        if policy is None:
            policy = ApprovalPolicy(org_id=org.id, involvement_mode=mode)
            db.session.add(policy)
        policy.trusted_contractor_ids = list(contractor_ids)
        db.session.commit()
        return policy

    def case(self, org, reporter=None, title="Leaking kitchen tap", category="Plumbing"):
        case = Case(
            org_id=org.id,
            reporter_user_id=reporter.id if reporter else None,
            title=title,
            category=category,
        )
        db.session.add(case)
        db.session.commit()
        return case

    def quote(self, case, contractor, total="100.00", status=QuoteStatus.SENT, expires_at=None):
        quote = Quote(
            case_id=case.id,
            contractor_id=contractor.id,
            total=Decimal(total),
            currency="USD",
            status=status.value,
            expires_at=expires_at,
        )
        db.session.add(quote)
        db.session.commit()
        return quote


@pytest.fixture
def seed(app):
    return Seed()


@pytest.fixture
def login(client):
    def _login(user):
        # Requests share the fixture's app context, so drop the user Flask-Login cached on g
        g.pop("_login_user", None)
        with client.session_transaction() as sess:
            sess["_user_id"] = str(user.id)
            sess["_fresh"] = True
        return client
    return _login
