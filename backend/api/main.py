import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from backend.bootstrap import build_components
from backend.config.settings import settings

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup: build components once per process ---
    logger.info("Initializing ingestion stores, queue and pipelines...")
    components = build_components(settings)

    # Store in app.state for dependency injection
    app.state.components = components
    app.state.job_store = components.job_store
    app.state.session_store = components.session_store
    app.state.source_store = components.source_store
    app.state.vector_store = components.vector_store
    app.state.batch_worker = components.batch_worker
    app.state.ingestion_pipeline = components.ingestion_pipeline

    logger.info("Initialization complete. All systems ready.")

    yield

    # --- Shutdown ---
    logger.info("Shutting down ingestion backend...")
    components.shutdown()

# Create FastAPI instance
app = FastAPI(
    title="Arthyx Ingestion API",
    description="Batched document extraction with streamed progress and vector indexing",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Session-Id"],
)

# Health Check Endpoint
@app.get("/health", tags=["System"])
def health_check(request: Request):
    try:
        job_store_ok = request.app.state.job_store.ping()
    except Exception as e:
        logger.warning(f"Job store ping failed: {e}")
        job_store_ok = False
    return {"status": "ok" if job_store_ok else "degraded", "job_store": job_store_ok}

from backend.api.routes import ingest, worker, sessions

app.include_router(ingest.router, prefix="/api", tags=["Ingestion"])
app.include_router(worker.router, prefix="/api", tags=["Workers"])
app.include_router(sessions.router, prefix="/api", tags=["Sessions"])
