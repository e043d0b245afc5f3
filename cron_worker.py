"""
Cron entry point for hosts without a worker process.

Usage: configure a cron entry to run this script every minute. Each run
checks the auto-logout schedule once; pass --now to check everyone out
immediately instead.
"""
import sys

from app import create_app
from ledger import CheckoutActor


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    app = create_app()
    with app.app_context():
        if "--now" in argv:
            count = app.extensions["presence_ledger"].force_checkout_all(actor=CheckoutActor.SCHEDULER)
            print(f"Cron: checked out {count} member(s).")
            return 0
        count = app.extensions["auto_logout_sweeper"].tick()
        if count is not None:
            print(f"Cron: auto-logout checked out {count} member(s).")
    return 0


if __name__ == "__main__":
    sys.exit(main())
