"""Read-only reporting over closed check-in sessions."""
from datetime import timedelta


def total_duration(store, identity) -> timedelta:
    """Sum of session durations for one member; sessions without a duration count as zero."""
    total_ms = sum(ms or 0 for ms in store.history_durations(identity))
    return timedelta(milliseconds=total_ms)


def session_count(store, identity) -> int:
    return len(store.history_durations(identity))


def format_hours(total_ms) -> str:
    """5400000 -> '1h 30m'. Partial minutes are dropped."""
    total_minutes = int(total_ms or 0) // (1000 * 60)
    return f"{total_minutes // 60}h {total_minutes % 60}m"


def total_hours_summary(store, identity) -> dict:
    durations = store.history_durations(identity)
    total_ms = sum(ms or 0 for ms in durations)
    return {
        "userId": identity,
        "totalSessions": len(durations),
        "totalMilliseconds": total_ms,
        "totalHours": format_hours(total_ms),
    }


def session_history(store, identity=None):
    """Closed sessions as JSON-ready dicts, newest first."""
    return [
        {
            "userId": closed.identity,
            "checkedInAt": closed.started_at.isoformat(),
            "checkedOutAt": closed.ended_at.isoformat(),
            "durationMs": closed.duration_ms,
            "forced": closed.forced,
            "actor": closed.actor.value,
        }
        for closed in store.history(identity)
    ]
