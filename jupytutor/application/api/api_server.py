from datetime import datetime, timezone
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from jupytutor.application.api.dependencies import get_settings
from jupytutor.application.api.route import notebook
from jupytutor.infrastructure.observability.logging import metrics, setup_logging

# Setup logging
settings = get_settings()
setup_logging(settings.log_level, settings.log_format, settings.service_name)
logger = structlog.get_logger(__name__)

app = FastAPI(title="Jupytutor Context Service")

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Notebook frontends are served from arbitrary hosts
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(notebook.router)


@app.on_event("startup")
async def startup_event():
    logger.info("Jupytutor service started", service=settings.service_name)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "metrics": metrics.get_metrics_summary(),
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
