import os

DEFAULT_AUTO_LOGOUT_TIMES = (
    "07:50,08:40,09:35,10:30,11:15,11:45,12:15,12:48,13:40,14:30,17:00"
)


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "change-this-in-production")
    # Database configuration
    # Use DATABASE_URL if provided (Heroku), otherwise construct from individual vars
    if os.getenv('DATABASE_URL'):
        raw_url = os.environ.get("DATABASE_URL")
        # Heroku may provide postgres://; SQLAlchemy expects postgresql+psycopg2://
        if raw_url.startswith("postgres://"):
            raw_url = raw_url.replace("postgres://", "postgresql+psycopg2://", 1)
        elif raw_url.startswith("postgresql://"):
            raw_url = raw_url.replace("postgresql://", "postgresql+psycopg2://", 1)
        SQLALCHEMY_DATABASE_URI = raw_url
    elif os.environ.get("DB_HOST"):
        DB_HOST = os.environ.get("DB_HOST")
        DB_PORT = os.environ.get("DB_PORT", "3306")
        DB_NAME = os.environ.get("DB_NAME", "nhs_checkin")
        DB_USER = os.environ.get("DB_USER", "nhs")
        # Do not hard-code passwords; require via environment
        DB_PASSWORD = os.environ.get("DB_PASSWORD", "")

        # URL-encode user and password to safely handle special characters (e.g., ! @ : / ? #)
        from urllib.parse import quote_plus
        enc_user = quote_plus(DB_USER)
        enc_password = quote_plus(DB_PASSWORD)

        SQLALCHEMY_DATABASE_URI = (
            f"mysql+pymysql://{enc_user}:{enc_password}@{DB_HOST}:{DB_PORT}/{DB_NAME}?charset=utf8mb4"
        )
    else:
        # Local SQLite database for development
        basedir = os.path.abspath(os.path.dirname(__file__))
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{os.path.join(basedir, 'instance', 'nhs_checkin.sqlite3')}"
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # "sql" keeps the ledger in the database; "memory" keeps it in process (demo/dev only)
    CHECKIN_STORE = os.environ.get("CHECKIN_STORE", "sql").lower()

    # ==========================
    # Auto-logout schedule
    # ==========================
    # Bell times (24h HH:MM) at which everyone still checked in is checked out.
    AUTO_LOGOUT_TIMES = os.environ.get("AUTO_LOGOUT_TIMES", DEFAULT_AUTO_LOGOUT_TIMES)
    CHECKIN_TIMEZONE = os.environ.get("CHECKIN_TIMEZONE", "America/New_York")
    # The schedule has minute granularity, so the poll must be at most 60 seconds.
    AUTO_LOGOUT_POLL_SECONDS = int(os.environ.get("AUTO_LOGOUT_POLL_SECONDS", "30"))
    # On Heroku the poll runs in the worker dyno (worker.py) instead of the web process
    AUTO_LOGOUT_ENABLED = os.environ.get(
        "AUTO_LOGOUT_ENABLED",
        "False" if os.getenv("FLASK_ENV") == "production" else "True",
    ).lower() == "true"

    # ==========================
    # Admin access
    # ==========================
    # Werkzeug password hash (generate with: flask --app app hash-password).
    # Empty hash disables admin login entirely.
    ADMIN_PASSWORD_HASH = os.environ.get("ADMIN_PASSWORD_HASH", "")
    # Shared secret an external cron sends as X-Cron-Secret to trigger the sweep.
    CRON_SECRET = os.environ.get("CRON_SECRET", "")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
