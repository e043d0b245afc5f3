#!/usr/bin/env python3
"""
Heroku worker process for the auto-logout poll.
This keeps the scheduler running separately from the web process
(set AUTO_LOGOUT_ENABLED=False on the web dyno).
"""

from dotenv import load_dotenv
from apscheduler.schedulers.blocking import BlockingScheduler

# Load environment variables
load_dotenv()

# Import after loading env vars
from app import create_app
from sweeper import add_poll_job


def run_scheduler():
    """Run the blocking scheduler that polls the auto-logout schedule."""
    app = create_app()
    sweeper = app.extensions["auto_logout_sweeper"]
    poll_seconds = app.config["AUTO_LOGOUT_POLL_SECONDS"]

    scheduler = BlockingScheduler(timezone=sweeper.tz)
    add_poll_job(scheduler, sweeper, poll_seconds)

    print("🚀 Starting NHS check-in auto-logout worker...")
    print(f"🕐 Bell times ({sweeper.tz.key}): {', '.join(sweeper.times)}")
    print(f"🔁 Polling every {poll_seconds}s")

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        scheduler.shutdown(wait=False)


if __name__ == '__main__':
    run_scheduler()
