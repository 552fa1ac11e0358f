"""Garden Render — FastAPI application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .routers import render
from .services import providers, storage

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    status = providers.create_default_adapters().status()
    if not any(status.values()):
        logger.warning("No image provider credentials set — renders will return the bare base canvas")
    else:
        logger.info(f"Image providers: {status}")
    yield


app = FastAPI(
    title="Garden Render",
    description="Generative compositing of garden layouts into rendered images",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS for the Vite dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

storage.OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
app.mount(storage.PUBLIC_PREFIX, StaticFiles(directory=storage.OUTPUT_DIR), name="gardens")

app.include_router(render.router)


@app.get("/health")
async def health() -> dict:
    return {
        "status": "ok",
        "providers": providers.create_default_adapters().status(),
    }


@app.get("/")
async def root() -> dict:
    return {"message": "Garden Render API", "docs": "/docs"}
