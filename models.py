"""
models.py
-----------------
SQLAlchemy tables behind the check-in ledger. The extension is created
unbound and attached to the app in create_app().
"""
from datetime import datetime

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.dialects import mysql

db = SQLAlchemy()

# Plain DATETIME on MySQL drops fractional seconds
Timestamp = db.DateTime().with_variant(mysql.DATETIME(fsp=6), "mysql", "mariadb")


class ActiveCheckin(db.Model):
    """
    A member who is currently checked in. One row per member at most;
    the unique constraint on user_id is what makes concurrent check-ins safe.
    """
    __tablename__ = "active_checkins"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(32), unique=True, nullable=False, index=True)
    checked_in_at = db.Column(Timestamp, nullable=False, index=True)  # naive UTC


class SessionHistory(db.Model):
    """
    A finished check-in session. Rows are only ever inserted.
    """
    __tablename__ = "session_history"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(32), nullable=False, index=True)
    checked_in_at = db.Column(Timestamp, nullable=False, index=True)  # naive UTC
    checked_out_at = db.Column(Timestamp, nullable=False)
    duration_ms = db.Column(db.BigInteger, nullable=True)
    forced_by_admin = db.Column(db.Boolean, default=False, nullable=False)
    actor = db.Column(db.String(20), nullable=False, default='self')  # self, admin, scheduler
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
