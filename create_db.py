from campusdesk import app, db
from campusdesk.issuer import AuthIssuer
from campusdesk.models import AuthAccount
from campusdesk.storage import MemoryStorage
import os

with app.app_context():
    db.create_all()
    admin_email = os.environ.get('ADMIN_EMAIL')
    admin_pw_hash = os.environ.get('ADMIN_PASSWORD_HASH')
    admin_pw_plain = os.environ.get('ADMIN_PASSWORD')
    if admin_email and not AuthAccount.query.filter_by(email=admin_email.lower()).first():
        issuer = AuthIssuer(MemoryStorage(), app.config['SECRET_KEY'])
        if admin_pw_plain:
            issuer.create_account(admin_email, admin_pw_plain, role='admin', name='Administrator')
        elif admin_pw_hash:
            account = issuer.create_account(admin_email, os.urandom(16).hex(), role='admin', name='Administrator')
            account.password_hash = admin_pw_hash
            db.session.commit()
