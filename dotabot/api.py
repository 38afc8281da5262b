import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from pydantic import BaseModel

from dotabot.errors import DataFetchError, NotFound
from dotabot.metrics import render_latest
from dotabot.models import NormalizedHistoryEntry, NormalizedMatchRecord, NormalizedProfile
from dotabot.orchestrator import MAX_HISTORY_LIMIT, ResilienceOrchestrator
from dotabot.services import DataServices, start_services

load_dotenv(Path(__file__).parent.parent / ".env")

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = await start_services()
    app.state.services = services
    try:
        yield
    finally:
        await services.aclose()


app = FastAPI(title="dotabot data API", lifespan=lifespan)


def get_services(request: Request) -> DataServices:
    return request.app.state.services


def get_orchestrator(services: DataServices = Depends(get_services)) -> ResilienceOrchestrator:
    return services.orchestrator


class InvalidateResponse(BaseModel):
    success: bool


def _raise_http(subject_id: str, exc: Exception) -> None:
    """NotFound → 404 ("no data"), other upstream failures → 502 ("try later")."""
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NotFound):
        raise HTTPException(status_code=404, detail="No data for this player")
    logger.warning("[api] upstream failure for %s: %s", subject_id, exc)
    raise HTTPException(status_code=502, detail="Failed to fetch player data")


# ========== Service endpoints ==========

@app.get("/health")
async def health(services: DataServices = Depends(get_services)):
    return {"status": "healthy", **services.health()}


@app.get("/metrics")
async def metrics():
    body, content_type = render_latest()
    return Response(content=body, media_type=content_type)


# ========== Player data ==========

@app.get("/api/players/{subject_id}/last_match", response_model=NormalizedMatchRecord)
async def api_last_match(subject_id: str, orchestrator: ResilienceOrchestrator = Depends(get_orchestrator)):
    """Most recent match of the player, from cache or whichever provider answers."""
    try:
        return await orchestrator.get_last_match(subject_id)
    except (ValueError, DataFetchError) as exc:
        _raise_http(subject_id, exc)


@app.get("/api/players/{subject_id}/profile", response_model=NormalizedProfile)
async def api_profile(subject_id: str, orchestrator: ResilienceOrchestrator = Depends(get_orchestrator)):
    try:
        return await orchestrator.get_profile(subject_id)
    except (ValueError, DataFetchError) as exc:
        _raise_http(subject_id, exc)


@app.get("/api/players/{subject_id}/history", response_model=list[NormalizedHistoryEntry])
async def api_history(
    subject_id: str,
    limit: int = Query(default=20, ge=1, le=MAX_HISTORY_LIMIT, description="Number of recent matches"),
    orchestrator: ResilienceOrchestrator = Depends(get_orchestrator),
):
    """Recent matches, oldest first (ready for progress charts)."""
    try:
        return await orchestrator.get_history(subject_id, limit)
    except (ValueError, DataFetchError) as exc:
        _raise_http(subject_id, exc)


@app.delete("/api/players/{subject_id}/cache", response_model=InvalidateResponse)
async def api_invalidate(subject_id: str, orchestrator: ResilienceOrchestrator = Depends(get_orchestrator)):
    """Forces the next request for this player to go upstream."""
    try:
        await orchestrator.invalidate(subject_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return InvalidateResponse(success=True)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=os.getenv("API_HOST", "0.0.0.0"), port=int(os.getenv("API_PORT", "8000")))
