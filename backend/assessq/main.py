"""FastAPI application entry point."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .database import init_db
from .scheduler import setup_logging, start_scheduler, stop_scheduler
from .api import candidates, monitoring, queue

# Create FastAPI app
app = FastAPI(
    title="Voice Assessment Queue",
    description="Queued CEFR scoring of candidate voice recordings with retries and health monitoring",
    version="0.1.0",
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(candidates.router, prefix="/api/candidates", tags=["candidates"])
app.include_router(queue.router, prefix="/api/queue", tags=["queue"])
app.include_router(monitoring.router, prefix="/api/monitoring", tags=["monitoring"])


@app.on_event("startup")
async def startup_event():
    """Initialize database and start dispatch and health monitoring."""
    setup_logging(settings.log_level)
    init_db()
    start_scheduler()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the health monitor and drain the dispatcher."""
    stop_scheduler()


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Voice Assessment Queue",
        "description": "Queued CEFR scoring of candidate voice recordings",
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
