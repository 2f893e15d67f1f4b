from datetime import datetime, timezone


def utc_now() -> datetime:
    # Naive UTC: SQLite drops tzinfo on the way back, so every stored timestamp stays naive.
    return datetime.now(timezone.utc).replace(tzinfo=None)
