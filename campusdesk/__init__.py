import os
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from campusdesk.config import DevelopmentConfig, ProductionConfig, TestingConfig
from datetime import timedelta
from werkzeug.security import generate_password_hash

app = Flask(__name__, instance_relative_config=True)

# Select config based on FLASK_ENV
env = os.environ.get("FLASK_ENV", "development").lower()
if env == "production":
    app.config.from_object(ProductionConfig)
elif env == "testing":
    app.config.from_object(TestingConfig)
else:
    app.config.from_object(DevelopmentConfig)

# Compute DB URI for development using instance path
if env == "development":
    os.makedirs(app.instance_path, exist_ok=True)
    app.config['SQLALCHEMY_DATABASE_URI'] = DevelopmentConfig.database_uri(app.instance_path)

db = SQLAlchemy(app)

# The signed session cookie is the client's persistent storage
timeout_minutes = app.config.get('SESSION_TIMEOUT_MINUTES', 60 * 24 * 7)
try:
    app.permanent_session_lifetime = timedelta(minutes=int(timeout_minutes))
except (TypeError, ValueError):
    app.permanent_session_lifetime = timedelta(days=7)

from campusdesk.models import AuthAccount, Profile  # noqa: E402

with app.app_context():
    db.create_all()
    admin_email = os.environ.get("ADMIN_EMAIL")
    admin_pw_hash = os.environ.get("ADMIN_PASSWORD_HASH")
    admin_pw_plain = os.environ.get("ADMIN_PASSWORD")
    if admin_email and (admin_pw_hash or admin_pw_plain):
        if not AuthAccount.query.filter_by(email=admin_email.lower()).first():
            account = AuthAccount(
                email=admin_email.lower(),
                password_hash=admin_pw_hash or generate_password_hash(admin_pw_plain),
            )
            db.session.add(account)
            db.session.flush()
            db.session.add(Profile(id=account.id, role="admin", name="Administrator"))
            db.session.commit()

from campusdesk import routes  # noqa: E402,F401
