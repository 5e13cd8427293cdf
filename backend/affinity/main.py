from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import logging
import os
from datetime import datetime

from affinity.core.config import settings
from affinity.database import init_db
from affinity.routers import admin_digests
from affinity.scheduler import DigestScheduler

# ----------------------------
# Logging
# ----------------------------
logger = logging.getLogger("affinity")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

# Server fingerprint for debugging
SERVER_BOOT_ID = f"affinity-digest::{os.getpid()}::{datetime.utcnow().isoformat()}"

app = FastAPI(debug=settings.DEBUG)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("[UNHANDLED] %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


# ----------------------------
# Routers
# ----------------------------
app.include_router(admin_digests.router, prefix="/admin")


@app.on_event("startup")
def on_startup() -> None:
    logger.info("[BOOT] %s", SERVER_BOOT_ID)
    init_db()

    scheduler = DigestScheduler(settings=settings)
    app.state.digest_scheduler = scheduler
    if settings.SCHEDULER_ENABLED:
        scheduler.start()
    else:
        logger.info("[BOOT] SCHEDULER_ENABLED=false, digest jobs will only run on demand")


@app.on_event("shutdown")
def on_shutdown() -> None:
    scheduler = getattr(app.state, "digest_scheduler", None)
    if scheduler is not None:
        scheduler.stop()


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/api/health")
def api_health_check():
    return {"status": "ok"}
