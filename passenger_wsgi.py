"""
Passenger / gunicorn WSGI entry point.

Exposes the Flask WSGI `application` and, unless disabled, starts the
in-process auto-logout poll.
"""
import os
import sys

# Ensure the app path is on sys.path (this directory contains app.py)
APP_DIR = os.path.dirname(os.path.abspath(__file__))
if APP_DIR not in sys.path:
    sys.path.insert(0, APP_DIR)

from app import create_app
from sweeper import start_scheduler

application = create_app()
start_scheduler(application)
