"""MosqOS Access entrypoint."""

import uvicorn

from mosqos.config.settings import get_settings


def cli() -> None:
    """CLI entrypoint."""
    settings = get_settings()
    uvicorn.run("mosqos.web.app:create_app", factory=True, reload=settings.env == "dev")


if __name__ == "__main__":
    cli()
