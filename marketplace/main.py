import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from marketplace.config import settings
from marketplace.database import init_db
from marketplace.errors import MarketplaceError
from marketplace.api import routes
from marketplace.services.api_client import close_http_client
from marketplace.services.scheduler import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Line-oriented JSON logs to stdout"""
    level = settings.log_level.upper()
    root = logging.getLogger()
    root.setLevel(level)

    # avoid duplicate handlers in reloaders
    if not any(isinstance(h, logging.StreamHandler) for h in root.handlers):
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            fmt='{"ts":"%(asctime)s","level":"%(levelname)s","msg":"%(message)s","name":"%(name)s"}',
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
        handler.setFormatter(formatter)
        root.addHandler(handler)


_configure_logging()

# Initialize database
init_db()

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    debug=settings.debug
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(routes.router)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    """Render every domain error with its message and next action"""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.on_event("startup")
async def startup_event():
    """Start background scheduler on app startup"""
    start_scheduler()
    logger.info("%s started - Scheduler running", settings.app_name)


@app.on_event("shutdown")
async def shutdown_event():
    """Stop background scheduler and close the API client on shutdown"""
    stop_scheduler()
    await close_http_client()
    logger.info("%s stopped", settings.app_name)


@app.get("/")
def read_root():
    return {
        "message": f"Welcome to {settings.app_name}",
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
