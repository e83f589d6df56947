from datetime import datetime


def at(clock, day=1):
    """datetime on 2024-06-<day> at 'HH:MM' or 'HH:MM:SS'."""
    parts = [int(p) for p in clock.split(':')]
    while len(parts) < 3:
        parts.append(0)
    return datetime(2024, 6, day, *parts)
