import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from jobtracker import config
from jobtracker.api.v1.api import api_router
from jobtracker.database import init_db
from jobtracker.logging_config import configure_logging
from jobtracker.services.scheduler import start_scheduler, stop_scheduler

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Job Mail Tracker",
    description="Incremental Gmail ingestion, job-email classification and per-company rollups",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup():
    """Create database tables and start the daily sweep."""
    init_db()
    logger.info("Database tables created/verified")

    if config.OPENAI_API_KEY:
        logger.info("Email classification enabled (model: %s).", config.EMAIL_CLASS_MODEL)
    else:
        logger.warning("OPENAI_API_KEY not set. Job email classification is disabled.")

    if config.SCHEDULER_ENABLED:
        start_scheduler()


@app.on_event("shutdown")
def on_shutdown():
    stop_scheduler()


app.include_router(api_router)


@app.get("/")
def health_check():
    return {"status": "ok"}
