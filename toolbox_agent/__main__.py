"""Run the toolbox agent API server.

Usage:
    python -m toolbox_agent
"""

import uvicorn

from toolbox_agent.api.dependencies import get_settings


def main() -> None:
    """Start uvicorn with the application factory."""
    settings = get_settings()
    uvicorn.run(
        "toolbox_agent.api.app:create_app",
        factory=True,
        host=settings.api.host,
        port=settings.api.port,
        log_level=settings.observability.logging.level.lower(),
    )


if __name__ == "__main__":
    main()
