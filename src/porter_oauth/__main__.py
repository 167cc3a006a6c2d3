"""Porter OAuth entry point.

Commands:
  serve   Run the authorization server (default).
  sweep   Run one cleanup pass against the configured token file and exit.
"""

import argparse
import logging
import sys

from porter_oauth import __version__
from porter_oauth.config import get_settings
from porter_oauth.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def run_sweep() -> int:
    """Evict expired tokens from the configured JSON token store."""
    from porter_oauth.api.oauth2.storage import JsonFileTokenStore
    from porter_oauth.api.oauth2.sweeper import CleanupSweeper

    settings = get_settings()
    if settings.token_store_path is None:
        logger.error("PORTER_OAUTH_TOKEN_STORE_PATH is not set; nothing to sweep")
        return 1
    result = CleanupSweeper(JsonFileTokenStore(settings.token_store_path)).sweep_once()
    print(
        f"Removed {result.access_tokens} access tokens, "
        f"{result.refresh_tokens} refresh tokens"
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="porter-oauth",
        description="OAuth 2.0 authorization server for the Porter travel agent",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  porter-oauth                       Start the server on 127.0.0.1:8888
  porter-oauth serve --port 9000     Start on another port
  porter-oauth serve --dev           Start with auto-reload
  porter-oauth sweep                 Clean expired tokens from the token file
""",
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("command", nargs="?", default="serve", choices=["serve", "sweep"])
    parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    parser.add_argument("--port", "-p", type=int, default=8888, help="Port (default: 8888)")
    parser.add_argument("--dev", action="store_true", help="Auto-reload on code changes")
    args = parser.parse_args(argv)

    setup_logging(level=get_settings().log_level)

    if args.command == "sweep":
        return run_sweep()

    from porter_oauth.api.serve import run_api_server

    run_api_server(host=args.host, port=args.port, dev=args.dev)
    return 0


if __name__ == "__main__":
    sys.exit(main())
