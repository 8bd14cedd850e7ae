# create.py - bootstrap an organization and its first admin
from getpass import getpass
from casedesk import create_app
from casedesk.extensions import db
from casedesk.models.organization import Organization, ApprovalPolicy
from casedesk.models.user import User


def main():
    app = create_app()
    with app.app_context():
        db.create_all()

        org_name = input("Organization name: ").strip()
        email = input("Admin email: ").strip().lower()
        name = input("Full name: ").strip()
        mode = input("Involvement mode [hands-off/balanced/hands-on] (balanced): ").strip() or "balanced"
        password = getpass("Password: ")

        # Check existing
        if User.query.filter_by(email=email).first():
            print("User with that email already exists.")
            return

        org = Organization(name=org_name)
        db.session.add(org)
        db.session.flush()

        user = User(name=name, email=email, role="org_admin", org_id=org.id)
        user.set_password(password)
        db.session.add(user)
        db.session.add(ApprovalPolicy(org_id=org.id, involvement_mode=mode, trusted_contractor_ids=[]))
        db.session.commit()
        print(f"Organization {org_name!r} and admin {email} created successfully.")

if __name__ == "__main__":
    main()
