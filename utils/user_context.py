"""Propagate the authenticated actor through the call stack using contextvars."""

from contextvars import ContextVar
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from auth.types import Actor

_current_actor: ContextVar["Actor | None"] = ContextVar("current_actor", default=None)


def get_current_actor() -> "Actor":
    """
    Get the current actor (id + role) from context.

    Raises RuntimeError if no actor is set. Code that needs an actor
    and runs outside an authenticated request is a bug.
    """
    actor = _current_actor.get()
    if actor is None:
        raise RuntimeError(
            "No actor context set. This usually means you're calling "
            "actor-scoped code outside of an authenticated request."
        )
    return actor


def set_current_actor(actor: "Actor") -> None:
    """
    Set current actor in context.

    Called by auth middleware after validating the session.
    """
    _current_actor.set(actor)


def clear_current_actor() -> None:
    """
    Clear actor context.

    Called by auth middleware after request completes.
    Must be called in finally block to prevent context leakage.
    """
    _current_actor.set(None)
