import logging
import time
from datetime import timedelta

from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from . import config
from . import models  # noqa: F401  registers tables on Base.metadata
from .database import Base, SessionLocal, engine
from .routes import include_modular_routers
from .services.scheduler import PeriodicTask, build_background_tasks
from .tags import load_tag_index

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Campus Match API")
include_modular_routers(app)

_background_tasks: list[PeriodicTask] = []


def wait_for_db(max_attempts: int = 20, delay_seconds: float = 1.5) -> None:
    last_err: Exception | None = None
    for _ in range(max_attempts):
        try:
            with SessionLocal() as db:
                db.execute(text("SELECT 1"))
                db.commit()
            return
        except OperationalError as exc:
            last_err = exc
            logger.warning("[STARTUP] Database not ready, retrying in %ss", delay_seconds)
            time.sleep(delay_seconds)
    if last_err:
        raise last_err


def create_tables() -> None:
    Base.metadata.create_all(bind=engine)


def start_background_tasks() -> None:
    if not config.ENABLE_BACKGROUND_TASKS:
        logger.info("[STARTUP] Background tasks disabled")
        return
    tasks = build_background_tasks(
        app.state.tag_index,
        config.MATCHING_CONFIG,
        preview_interval=config.MATCH_PREVIEW_INTERVAL_SECONDS,
        schedule_interval=config.CHECK_SCHEDULED_MATCH_INTERVAL_SECONDS,
        auto_accept_interval=config.CHECK_AUTO_ACCEPT_INTERVAL_SECONDS,
        auto_accept_timeout=timedelta(hours=config.FINAL_MATCH_AUTO_ACCEPT_TIMEOUT_HOURS),
    )
    for task in tasks:
        task.start()
    _background_tasks.extend(tasks)


@app.on_event("startup")
def on_startup() -> None:
    # An invalid tag definition raises ConfigError here and aborts startup.
    app.state.tag_index = load_tag_index(config.TAGS_PATH)
    wait_for_db()
    create_tables()
    start_background_tasks()


@app.on_event("shutdown")
def on_shutdown() -> None:
    for task in _background_tasks:
        task.stop(timeout=5)
    _background_tasks.clear()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
