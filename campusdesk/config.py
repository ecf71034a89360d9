import os


def _env_flag(name, default):
    return os.environ.get(name, default).lower() in ("1", "true", "yes", "on")


def _env_list(name, default):
    raw = os.environ.get(name, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


class BaseConfig:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    PASSWORD_MIN_LENGTH = int(os.environ.get("PASSWORD_MIN_LENGTH", 8))
    SESSION_TIMEOUT_MINUTES = int(os.environ.get("SESSION_TIMEOUT_MINUTES", 60 * 24 * 7))
    # Auth issuer
    ACCESS_TOKEN_TTL_SECONDS = int(os.environ.get("ACCESS_TOKEN_TTL_SECONDS", 3600))
    SESSION_STALE_HOURS = int(os.environ.get("SESSION_STALE_HOURS", 24))
    AUTH_INIT_TIMEOUT_SECONDS = float(os.environ.get("AUTH_INIT_TIMEOUT_SECONDS", 5))
    AUTH_STORAGE_NAMESPACES = _env_list(
        "AUTH_STORAGE_NAMESPACES", "auth,session,token,sb-,user_,last_valid_auth"
    )
    # Navigation
    LOGIN_URL = os.environ.get("LOGIN_URL", "/login")
    UNAUTHORIZED_URL = os.environ.get("UNAUTHORIZED_URL", "/unauthorized")
    PUBLIC_PATHS = _env_list(
        "PUBLIC_PATHS", "/login,/forgot-password,/update-password,/unauthorized"
    )
    # Attendance
    ATTENDANCE_PERIODS = int(os.environ.get("ATTENDANCE_PERIODS", 6))
    SEMESTERS = int(os.environ.get("SEMESTERS", 4))
    ATTENDANCE_LOW_THRESHOLD = float(os.environ.get("ATTENDANCE_LOW_THRESHOLD", 75.0))
    SESSION_COOKIE_SECURE = _env_flag("SESSION_COOKIE_SECURE", "false")


class DevelopmentConfig(BaseConfig):
    # Default to instance/campusdesk.db unless overridden
    INSTANCE_PATH = os.environ.get("FLASK_INSTANCE_PATH")

    @staticmethod
    def database_uri(instance_path: str) -> str:
        db_path = os.environ.get("DATABASE_PATH")
        if db_path:
            return f"sqlite:///{db_path}"
        return "sqlite:///" + os.path.join(instance_path, "campusdesk.db")


class TestingConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URI", "sqlite:///:memory:")
    AUTH_INIT_TIMEOUT_SECONDS = 5


class ProductionConfig(BaseConfig):
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URI", "sqlite:///campusdesk.db")
    SESSION_COOKIE_SECURE = _env_flag("SESSION_COOKIE_SECURE", "true")
