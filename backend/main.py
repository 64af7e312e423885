import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from config import settings

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🎨 Sketchbound backend starting up...")
    yield
    from services.room_host import get_room_manager
    get_room_manager().close_all()
    logger.info("Backend shutting down.")


app = FastAPI(
    title="Sketchbound",
    version="0.1.0",
    description="Real-time multiplayer AI party games — drawing guesses and a voted text adventure, powered by Gemini",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "sketchbound", "version": "0.1.0"}


from routers.room_router import router as room_router
from routers.ws_router import router as ws_router

app.include_router(room_router, prefix="/api")
app.include_router(ws_router)


# Generated images are written to disk and served back by URL
os.makedirs(settings.generated_dir, exist_ok=True)
app.mount("/generated", StaticFiles(directory=settings.generated_dir), name="generated")


# Serve compiled frontend in production
_frontend_dist = os.path.abspath(
    os.path.join(os.path.dirname(__file__), "..", "frontend", "dist")
)
if os.path.isdir(_frontend_dist):
    app.mount("/", StaticFiles(directory=_frontend_dist, html=True), name="static")
    logger.info(f"Serving frontend from {_frontend_dist}")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
