from fastapi import FastAPI
import logging

from app.config import settings
from app.services.gateway import ModelGateway

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Resume Tailor")

# A missing API key is fatal here, at startup, rather than on the first request
app.state.gateway = ModelGateway.from_env()

@app.get("/health")
async def health_check():
    return {"status": "ok"}

# Import and include routers
from app.routers import tailor_router
app.include_router(tailor_router.router)
