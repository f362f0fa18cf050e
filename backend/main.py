"""Reference implementation of the remote flashcard service.

A minimal in-memory server speaking the same REST contract as the real
backend, used for local development and end-to-end client tests.
"""

from fastapi import FastAPI

from backend.api.auth_router import router as auth_router
from backend.api.flashcard_router import Generator
from backend.api.flashcard_router import router as flashcard_router
from backend.api.server_store import ServerStore
from backend.config import settings


def create_app(generator: Generator | None = None) -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        description="Flashcard set storage and OAuth sessions",
        version="0.1.0",
    )
    app.state.store = ServerStore()
    app.state.generator = generator

    app.include_router(auth_router)
    app.include_router(flashcard_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
