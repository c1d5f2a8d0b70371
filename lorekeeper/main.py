import os
import logging
from dotenv import load_dotenv

# Load .env as early as possible so downstream modules (e.g., DB) see env vars
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from lorekeeper.config import env_bool
from lorekeeper.errors import LoreError
from lorekeeper.routes import health, campaigns, documents, sources, chat, admin
from lorekeeper.db.base import init_db
from lorekeeper.services.context_cache import get_cache_manager, reset_cache_manager
from lorekeeper.services.embedding_store import get_ingestion_queue
from lorekeeper.worker import build_scheduler, job_backfill_embeddings

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

app = FastAPI(title="Lorekeeper Backend")

origins_env = os.getenv("ALLOW_ORIGINS", "*")
allowed_origins = [o.strip() for o in origins_env.split(",") if o.strip()] or ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LoreError)
async def _lore_error(request: Request, exc: LoreError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.on_event("startup")
async def _startup():
    init_db()
    queue = get_ingestion_queue()
    await queue.start()
    if env_bool("EMBED_BACKFILL_ON_STARTUP", True):
        await job_backfill_embeddings(queue)
    if env_bool("SCHEDULER_ENABLED", True):
        scheduler = build_scheduler(queue)
        scheduler.start()
        app.state.scheduler = scheduler


@app.on_event("shutdown")
async def _shutdown():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.shutdown(wait=False)
        app.state.scheduler = None
    await get_ingestion_queue().stop()
    await get_cache_manager().close()
    reset_cache_manager()


app.include_router(health.router)
app.include_router(campaigns.router, prefix="/api")
app.include_router(documents.router, prefix="/api")
app.include_router(sources.router, prefix="/api")
app.include_router(chat.router, prefix="/api")
app.include_router(admin.router, prefix="/api")


@app.get("/")
def root():
    return {"message": "Lorekeeper backend running"}
