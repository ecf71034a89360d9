from campusdesk import app, db
from campusdesk.issuer import AuthIssuer
from campusdesk.models import AuthAccount
from campusdesk.storage import MemoryStorage
from werkzeug.security import generate_password_hash
import os
import secrets
import string


def generate_password(length: int = 16) -> str:
    alphabet = string.ascii_letters + string.digits
    return ''.join(secrets.choice(alphabet) for _ in range(length))


if __name__ == "__main__":
    email = os.environ.get('ADMIN_EMAIL', 'admin@campusdesk.local').lower()
    new_pw = generate_password()
    with app.app_context():
        issuer = AuthIssuer(MemoryStorage(), app.config['SECRET_KEY'])
        account = AuthAccount.query.filter_by(email=email).first()
        if not account:
            issuer.create_account(email, new_pw, role='admin', name='Administrator')
        else:
            account.password_hash = generate_password_hash(new_pw)
            db.session.commit()
            # Existing sessions must not outlive the old password
            issuer.revoke_all(account.id)
    # Print only the password for easy copying
    print(new_pw)
