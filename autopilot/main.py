import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from autopilot.config import get_settings
from autopilot.api.routes import automation, credentials, proposals
from autopilot.ai_core.oracle import LLMOracle
from autopilot.ai_core.planning import ModificationPlanner
from autopilot.services.applier import ChangeApplier
from autopilot.services.automation import AutomationService
from autopilot.services.pipeline import AutomationPipeline
from autopilot.services.scheduler import RepositoryScheduler
from autopilot.services.store import ProposalStore, RepositoryConfigStore, RunLogStore

settings = get_settings()

# Configure application logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

# Set log level for autopilot modules
logger = logging.getLogger("autopilot")
logger.setLevel(logging.DEBUG if settings.debug else logging.INFO)


def build_service() -> AutomationService:
    """Wire stores, planner, applier, pipeline and scheduler together."""
    data_dir = settings.data_dir or None
    config_store = RepositoryConfigStore(data_dir)
    proposal_store = ProposalStore(data_dir)
    run_log_store = RunLogStore(data_dir)

    planner = ModificationPlanner(LLMOracle(), settings)
    applier = ChangeApplier(proposal_store, run_log_store)
    pipeline = AutomationPipeline(
        config_store, proposal_store, run_log_store, planner, applier
    )
    scheduler = RepositoryScheduler(
        config_store, pipeline, settings.reconciliation_interval_seconds
    )
    return AutomationService(
        config_store, proposal_store, run_log_store, pipeline, scheduler
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    service = build_service()
    app.state.automation_service = service
    await service.scheduler.start()
    logger.info(f"{settings.app_name} started")
    try:
        yield
    finally:
        await service.scheduler.stop()
        logger.info(f"{settings.app_name} stopped")


app = FastAPI(
    title=settings.app_name,
    description="Scheduled, LLM-planned maintenance commits for GitHub repositories",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(credentials.router, prefix="/api", tags=["Credentials"])
app.include_router(automation.router, prefix="/api", tags=["Automation"])
app.include_router(proposals.router, prefix="/api", tags=["Proposals"])


@app.get("/")
async def root():
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": "0.1.0",
        "endpoints": {
            "repositories": "/api/repositories",
            "automation": "/api/automation",
            "proposals": "/api/proposals",
            "health": "/health",
            "docs": "/docs",
        },
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": settings.app_name}
