from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from proposal_engine.api.runs import router as runs_router
from proposal_engine.api.stream import router as stream_router
from proposal_engine.engine import open_default_engine
from proposal_engine.logging_config import configure_logging
from proposal_engine.orchestrator import Orchestrator
from proposal_engine.settings import settings

logger = logging.getLogger(__name__)


def create_app(orchestrator: Optional[Orchestrator] = None) -> FastAPI:
    """
    Build the API application.

    Pass an orchestrator to skip the default wiring (tests do).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler - runs on startup/shutdown."""
        owned = None
        if getattr(app.state, "orchestrator", None) is None:
            configure_logging()
            logger.info("Initializing workflow engine...")
            # Malformed dependency configuration is fatal at startup
            owned = await open_default_engine(settings)
            app.state.orchestrator = owned
            logger.info("Workflow engine ready")

        yield

        if owned is not None:
            await owned.store.close()
            logger.info("Shutting down...")

    app = FastAPI(title="Proposal Workflow Engine", lifespan=lifespan)
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(runs_router)
    app.include_router(stream_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "database": bool(settings.DATABASE_URL)}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
