"""Public ID generation using ULID."""

from ulid import ULID


def new_public_id(prefix: str) -> str:
    """Return a prefixed ULID string, e.g. ``q_01J5K…``."""
    return f"{prefix}{ULID()}"
