"""FastAPI application: route registration, error mapping, health check."""

from __future__ import annotations

import logging

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from trajectory_fhe.errors import TrajectoryFHEError
from trajectory_fhe.models import HealthResponse
from trajectory_fhe.routes.decryption import router as decryption_router
from trajectory_fhe.routes.events import router as events_router
from trajectory_fhe.routes.missions import router as missions_router
from trajectory_fhe.service import TrajectoryService, get_service

# Load .env before anything else
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Confidential Trajectory Collision Engine",
    description="Homomorphic collision-risk analysis with oracle-gated decryption",
    version="1.0.0",
)

# CORS for local dashboard dev servers
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TrajectoryFHEError)
async def engine_error_handler(request: Request, exc: TrajectoryFHEError):
    logger.warning("%s %s rejected: %s: %s", request.method, request.url.path, type(exc).__name__, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    logger.warning("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=400, content={"error": "ValueError", "detail": str(exc)})


# Register routes
app.include_router(missions_router)
app.include_router(decryption_router)
app.include_router(events_router)


@app.get("/api/health", response_model=HealthResponse)
def health_check(service: TrajectoryService = Depends(get_service)):
    available = service.is_available()
    return HealthResponse(
        status="ok" if available else "degraded",
        available=available,
        oracle=getattr(service.oracle, "name", type(service.oracle).__name__),
    )
