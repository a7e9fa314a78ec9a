"""SehatScan server entry point — ``python -m sehatscan.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from sehatscan.core.config.settings import get_settings
from sehatscan.core.server.app import create_app


def _is_loopback_host(host: str) -> bool:
    if host in {"localhost"}:
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Start the SehatScan MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.sehat_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger = logging.getLogger(__name__)
    if not settings.sehat_allow_insecure_bind and not _is_loopback_host(settings.sehat_host):
        raise RuntimeError(
            "Refusing to bind the SehatScan server to a non-loopback host: it serves one "
            "owner's health data with no auth layer. "
            "Set SEHAT_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    if not settings.sehat_owner_id:
        logger.warning("SEHAT_OWNER_ID is not set; every analysis request will fail with auth")
    logger.info(
        "Starting SehatScan health server on %s:%d",
        settings.sehat_host,
        settings.sehat_port,
    )

    mcp = create_app()
    mcp.run(
        transport="streamable-http",
        host=settings.sehat_host,
        port=settings.sehat_port,
    )


if __name__ == "__main__":
    run()
