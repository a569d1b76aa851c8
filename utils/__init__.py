"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc, to_utc, parse_iso, day_stamp, second_stamp
from utils.user_context import (
    get_current_actor,
    set_current_actor,
    clear_current_actor,
)
