from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from research_engine.api.routes import research
from research_engine.config import settings
from research_engine.services.logger import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: build the registry once so configuration errors fail fast.
    from research_engine.services.collection_registry import get_registry

    registry = get_registry()
    logger.info(
        f"Collection registry ready: {len(registry.collections)} collections, "
        f"{len(registry.system_collections)} system collections"
    )
    yield
    # Shutdown


app = FastAPI(
    title="Research Engine",
    description="Evidence-backed research across web search and vector collections",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(research.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "research-engine"}
