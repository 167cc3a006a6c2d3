# Route table.
# Created: 2026-10-18
#
# mount_routers(app) registers every (module, router, prefix) entry below.
# The OAuth endpoints answer at /oauth/* and, for clients configured against
# the old deployment, at /api/oauth/*.

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

ROUTES: list[tuple[str, str, str, str]] = [
    # (module_path, attr_name, prefix, tag)
    ("porter_oauth.api.v1.oauth2", "router", "", "OAuth2"),
    ("porter_oauth.api.v1.oauth2", "router", "/api", "OAuth2"),
    ("porter_oauth.api.v1.oauth2", "metadata_router", "", "OAuth2"),
    ("porter_oauth.api.v1.health", "router", "", "Health"),
]


def mount_routers(app: FastAPI) -> None:
    """Mount every router in ROUTES on *app*."""
    for module_path, attr_name, prefix, tag in ROUTES:
        mod = importlib.import_module(module_path)
        app.include_router(getattr(mod, attr_name), prefix=prefix)
        logger.debug("Mounted %s.%s at '%s' (%s)", module_path, attr_name, prefix or "/", tag)
