from datetime import datetime

from dotask.timewindow import local_timestamp


def at(*args) -> int:
    """Epoch seconds for a local wall-clock time."""
    return local_timestamp(datetime(*args))


# A Wednesday, well away from any daylight saving switch.
NOW = at(2026, 3, 11, 12, 0, 0)
