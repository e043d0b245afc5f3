import hmac
import logging
from functools import wraps

import click
from flask import Blueprint, Flask, current_app, jsonify, request, session
from dotenv import load_dotenv
from werkzeug.security import check_password_hash, generate_password_hash

# Load environment variables from .env file BEFORE importing Config so it can read envs
load_dotenv()

from config import Config
from history import session_history, total_hours_summary
from ledger import (
    AlreadyCheckedIn,
    CheckoutActor,
    NotCheckedIn,
    PresenceLedger,
    StorageUnavailable,
    mask_identity,
)
from models import db
from stores import MemoryStore, SqlStore
from sweeper import build_sweeper, start_scheduler

checkin_bp = Blueprint("checkin", __name__, url_prefix="/api/checkin")
admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


# ==========================
# APP FACTORY
# ==========================

def create_app(overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    if not app.config.get("TESTING"):
        logging.basicConfig(
            level=app.config["LOG_LEVEL"],
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )

    db.init_app(app)

    if app.config["CHECKIN_STORE"] == "memory":
        store = MemoryStore()
    else:
        store = SqlStore(db)
    app.extensions["presence_ledger"] = PresenceLedger(store)
    app.extensions["auto_logout_sweeper"] = build_sweeper(app)

    app.register_blueprint(checkin_bp)
    app.register_blueprint(admin_bp)

    @app.errorhandler(StorageUnavailable)
    def handle_storage_unavailable(e):
        app.logger.error(f"Storage error on {request.method} {request.path}: {e}")
        return jsonify({"error": "The check-in service is temporarily unavailable"}), 500

    @app.after_request
    def after_request(response):
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['Cache-Control'] = 'no-store'
        return response

    register_commands(app)
    return app


def get_ledger() -> PresenceLedger:
    return current_app.extensions["presence_ledger"]


def get_sweeper():
    return current_app.extensions["auto_logout_sweeper"]


# ==========================
# AUTH HELPERS
# ==========================

def admin_required(view_func):
    @wraps(view_func)
    def wrapper(*args, **kwargs):
        if not session.get("is_admin"):
            return jsonify({"error": "Unauthorized: Admin access required"}), 401
        return view_func(*args, **kwargs)
    return wrapper


def cron_authorized():
    """True when the request carries the configured cron secret."""
    secret = current_app.config.get("CRON_SECRET")
    provided = request.headers.get("X-Cron-Secret", "")
    return bool(secret) and hmac.compare_digest(provided.encode(), secret.encode())


def identity_from_body():
    data = request.get_json(silent=True) or {}
    user_id = data.get("userId")
    if isinstance(user_id, int) and not isinstance(user_id, bool):
        user_id = str(user_id)
    if not isinstance(user_id, str) or not user_id.strip():
        return None
    return user_id.strip()


def missing_user_id():
    return jsonify({"error": "User ID is required"}), 400


@admin_bp.route("/auth", methods=["POST"])
def admin_login():
    data = request.get_json(silent=True) or {}
    password_hash = current_app.config.get("ADMIN_PASSWORD_HASH") or ""
    provided = data.get("password")
    if not password_hash or not isinstance(provided, str) or not check_password_hash(password_hash, provided):
        current_app.logger.warning(f"Failed admin login from {request.remote_addr}")
        return jsonify({"error": "Invalid password"}), 401
    session["is_admin"] = True
    return jsonify({"ok": True})


@admin_bp.route("/auth", methods=["DELETE"])
def admin_logout():
    session.pop("is_admin", None)
    return jsonify({"ok": True})


# ==========================
# API: Check-in / check-out
# ==========================

@checkin_bp.route("", methods=["POST"])
def check_in():
    user_id = identity_from_body()
    if not user_id:
        return missing_user_id()

    result = get_ledger().check_in(user_id)
    if isinstance(result, AlreadyCheckedIn):
        return jsonify({
            "message": "User is already checked in",
            "checkedInAt": result.started_at.isoformat(),
        }), 409

    return jsonify({
        "message": "Successfully checked in",
        "userId": user_id,
        "checkedInAt": result.started_at.isoformat(),
    })


@checkin_bp.route("/checkout", methods=["POST"])
def check_out():
    user_id = identity_from_body()
    if not user_id:
        return missing_user_id()

    result = get_ledger().check_out(user_id)
    if isinstance(result, NotCheckedIn):
        return jsonify({"message": "User is not checked in"}), 404

    return jsonify({
        "message": "Successfully checked out",
        "userId": user_id,
        "duration": result.duration_ms,
    })


@checkin_bp.route("/status/<user_id>")
def checkin_status(user_id):
    active = get_ledger().status(user_id)
    return jsonify({
        "isCheckedIn": active is not None,
        "checkedInAt": active.started_at.isoformat() if active else None,
    })


@checkin_bp.route("/count")
def checkin_count():
    return jsonify({"count": get_ledger().count_active()})


@checkin_bp.route("/active")
def active_users():
    """Everyone currently checked in, most recent first."""
    return jsonify([
        {
            "userId": active.identity,
            "maskedId": mask_identity(active.identity),
            "checkedInAt": active.started_at.isoformat(),
        }
        for active in get_ledger().list_active()
    ])


# ==========================
# API: Admin
# ==========================

@checkin_bp.route("/admin/force-checkout", methods=["POST"])
@admin_required
def admin_force_checkout():
    user_id = identity_from_body()
    if not user_id:
        return missing_user_id()

    result = get_ledger().check_out(user_id, actor=CheckoutActor.ADMIN)
    if isinstance(result, NotCheckedIn):
        return jsonify({"error": "User not found or not currently checked in"}), 404

    current_app.logger.info(f"Admin force checkout for {mask_identity(user_id)}")
    return jsonify({"message": "User successfully checked out", "userId": user_id})


@checkin_bp.route("/logout-all", methods=["POST"])
@admin_required
def logout_all():
    count = get_ledger().force_checkout_all(actor=CheckoutActor.ADMIN)
    return jsonify({"message": "All users logged out successfully", "count": count})


@checkin_bp.route("/admin/auto-logout", methods=["POST"])
def auto_logout():
    """Scheduled-slot sweep, for an external cron or the admin panel's manual trigger."""
    if not (session.get("is_admin") or cron_authorized()):
        return jsonify({"error": "Unauthorized"}), 401

    sweeper = get_sweeper()
    now = sweeper.clock()
    current_time = sweeper.time_of_day(now)
    if not sweeper.is_logout_time(now):
        return jsonify({
            "message": f"No automatic logout scheduled for {current_time}",
            "currentTime": current_time,
            "fired": False,
            "count": 0,
        })

    count = sweeper.tick(now)
    if count is None:
        if sweeper.last_fired_slot != sweeper.slot_key(now):
            return jsonify({"error": "Failed to process auto-logout"}), 500
        return jsonify({
            "message": f"Auto-logout already ran at {current_time}",
            "currentTime": current_time,
            "fired": False,
            "count": 0,
        })

    return jsonify({
        "message": f"Auto-logout completed at {current_time}",
        "currentTime": current_time,
        "fired": True,
        "count": count,
    })


@checkin_bp.route("/admin/auto-logout", methods=["GET"])
def auto_logout_info():
    return jsonify(get_sweeper().schedule_info())


@checkin_bp.route("/admin/total-hours/<user_id>")
@admin_required
def admin_total_hours(user_id):
    return jsonify(total_hours_summary(get_ledger().store, user_id))


@checkin_bp.route("/admin/session-history/<user_id>")
@admin_required
def admin_session_history(user_id):
    return jsonify(session_history(get_ledger().store, user_id))


@checkin_bp.route("/admin/all-sessions")
@admin_required
def admin_all_sessions():
    return jsonify(session_history(get_ledger().store))


# ==========================
# CLI
# ==========================

def register_commands(app):

    @app.cli.command("init-db")
    def init_db_command():
        """
        Create the check-in tables.
        Run with: flask --app app init-db
        """
        db.create_all()
        print("Database initialized.")

    @app.cli.command("hash-password")
    @click.argument("password")
    def hash_password_command(password):
        """Print the ADMIN_PASSWORD_HASH value for a password."""
        print(generate_password_hash(password))

    @app.cli.command("sweep")
    def sweep_command():
        """Check out everyone now, regardless of the schedule."""
        count = get_ledger().force_checkout_all(actor=CheckoutActor.SCHEDULER)
        print(f"Checked out {count} member(s).")

    @app.cli.command("auto-logout-tick")
    def auto_logout_tick_command():
        """Run one scheduled-slot check (for cron entries that fire every minute)."""
        count = get_sweeper().tick()
        if count is None:
            print("No auto-logout due.")
        else:
            print(f"Auto-logout checked out {count} member(s).")


if __name__ == "__main__":
    app = create_app()
    with app.app_context():
        db.create_all()
    start_scheduler(app)
    app.run(debug=True, use_reloader=False)
