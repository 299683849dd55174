"""
Main entry point for Collab Machine.
"""

from .api import app  # noqa: F401

if __name__ == "__main__":
    import uvicorn

    from .config import get_settings

    settings = get_settings()
    uvicorn.run(
        "collab_machine.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        # One process per machine: the command log has a single writer.
        workers=1,
    )
