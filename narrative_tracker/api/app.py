from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from narrative_tracker.api.routes import router
from narrative_tracker.config import configure_logging, data_dir_from_env
from narrative_tracker.storage import Storage

load_dotenv(Path(__file__).parent.parent.parent / ".env")


def create_app(data_dir: Path | None = None) -> FastAPI:
    storage = Storage(data_dir or data_dir_from_env())
    configure_logging(storage.get_settings())

    app = FastAPI(title="Narrative Tracker")
    app.state.storage = storage
    app.include_router(router, prefix="/api")
    return app


# Default app instance for uvicorn (uses DATA_DIR env var or default)
app = create_app()
