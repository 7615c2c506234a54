"""Main FastAPI application"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tasklink.api import jobs, task_links, user_mappings
from tasklink.config import settings
from tasklink.models.base import SessionLocal, init_db
from tasklink.security import BasicAuthMiddleware
from tasklink.services.runtime import LinkServices
from tasklink.worker import TaskLinkWorker

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _reconcile_job(services: LinkServices):
    def run():
        db = SessionLocal()
        try:
            services.status_mirror(db).reconcile_tracker_statuses()
        except Exception as e:
            logger.error(f"Tracker status reconciliation failed: {e}")
        finally:
            db.close()

    return run


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    logger.info("Starting Task Link Service")
    init_db()
    services = LinkServices(settings)
    app.state.services = services
    app.state.worker = None

    if settings.task_link_worker_enabled:
        worker = TaskLinkWorker(services.processor, config=services.config)
        worker.start()
        if settings.tracker_reconcile_interval_minutes > 0:
            worker.schedule_reconcile(
                _reconcile_job(services), settings.tracker_reconcile_interval_minutes
            )
        app.state.worker = worker
    else:
        logger.info("Task link worker disabled (TASK_LINK_WORKER_ENABLED=false)")
    yield
    # Shutdown
    logger.info("Stopping Task Link Service")
    if app.state.worker is not None:
        app.state.worker.stop()
    services.close()


app = FastAPI(
    title="Task Link Service",
    description="Create tracker issues from tasks and keep the two linked",
    version="1.0.0",
    lifespan=lifespan,
)

if settings.auth_enabled:
    if not settings.auth_username or not settings.auth_password:
        raise RuntimeError("AUTH_ENABLED=true requires AUTH_USERNAME and AUTH_PASSWORD")
    app.add_middleware(
        BasicAuthMiddleware,
        username=settings.auth_username,
        password=settings.auth_password,
    )

# Include API routers
app.include_router(jobs.router)
app.include_router(task_links.router)
app.include_router(user_mappings.router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    worker = getattr(app.state, "worker", None)
    return {
        "status": "healthy",
        "service": "Task Link",
        "worker_running": bool(worker and worker.running),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tasklink.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )
