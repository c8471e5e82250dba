import logging
import os
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from deps import fetcher, pipeline
from routes.bulk import router as bulk_router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Restore the session on startup, stop polling and close HTTP on shutdown."""
    await pipeline.restore()
    yield
    pipeline.shutdown()
    await fetcher.aclose()


app = FastAPI(title="Bulk Creator API", version="1.0.0", lifespan=lifespan)

# CORS configuration - allow all origins for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(bulk_router)


@app.get("/health")
async def health():
    return {"status": "ok", "collaborators_configured": pipeline.api.is_configured}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
