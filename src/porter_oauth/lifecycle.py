"""Shutdown and reset hooks for process-wide singletons.

The cleanup sweeper registers a shutdown hook when the app starts; the
authorization server registers a reset hook so tests can drop the cached
instance. ``shutdown_all()`` runs hooks newest first, so anything
started late is stopped before what it depends on.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, NamedTuple

logger = logging.getLogger(__name__)


class _Hooks(NamedTuple):
    shutdown: Callable[[], Any] | None
    reset: Callable[[], Any] | None


_hooks: dict[str, _Hooks] = {}


def register(
    name: str,
    *,
    shutdown: Callable[[], Any] | None = None,
    reset: Callable[[], Any] | None = None,
) -> None:
    """Attach hooks under *name*, replacing any earlier registration.

    Args:
        name: Registry key, e.g. ``"sweeper"``.
        shutdown: Sync or async callable run by ``shutdown_all()``.
        reset: Sync callable run by ``reset_all()``.
    """
    _hooks.pop(name, None)
    _hooks[name] = _Hooks(shutdown, reset)


def registered() -> list[str]:
    return list(_hooks)


async def shutdown_all() -> None:
    """Run every shutdown hook; one failure does not skip the rest."""
    for name, hooks in reversed(list(_hooks.items())):
        if hooks.shutdown is None:
            continue
        try:
            outcome = hooks.shutdown()
            if asyncio.iscoroutine(outcome):
                await outcome
        except Exception:
            logger.warning("Shutdown hook %r failed", name, exc_info=True)
        else:
            logger.debug("Stopped %s", name)


def reset_all() -> None:
    """Run every reset hook and empty the registry."""
    for name, hooks in list(_hooks.items()):
        if hooks.reset is None:
            continue
        try:
            hooks.reset()
        except Exception:
            logger.warning("Reset hook %r failed", name, exc_info=True)
    _hooks.clear()
