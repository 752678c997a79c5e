import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from lecturenotes.clients import LLMGateway, create_gateway
from lecturenotes.config import Settings
from lecturenotes.database import LectureStore
from lecturenotes.routes import chapters, events, lectures
from lecturenotes.services.chapters import ChapterOrchestrator
from lecturenotes.services.notifications import NotificationHub
from lecturenotes.services.storage import StorageService

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, gateway: LLMGateway | None = None) -> FastAPI:
    """Build the application.  *gateway* overrides the configured provider."""
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Create tables and reset chapters left in ``processing`` by a previous
        run before serving any request.  Background deep dives are not resumed
        automatically; ``POST /api/lectures/{id}/continue`` does that."""
        logging.basicConfig(
            level=settings.log_level.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        store = LectureStore(settings.db_path)
        await store.init()
        await store.recover_stuck_chapters()

        hub = NotificationHub()
        app.state.settings = settings
        app.state.store = store
        app.state.hub = hub
        app.state.storage = StorageService(settings.exports_root)
        app.state.orchestrator = ChapterOrchestrator(
            store, gateway or create_gateway(settings), hub, settings
        )
        logger.info("Lecture notes service ready (db=%s)", settings.db_path)
        yield

    app = FastAPI(
        title="lecture-notes",
        description="Chaptered study notes from lecture transcripts",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(lectures.router)
    app.include_router(chapters.router)
    app.include_router(events.router)
    return app


app = create_app()
