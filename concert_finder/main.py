from fastapi import FastAPI
from loguru import logger

from concert_finder.core.logging import setup_logging
from concert_finder.core.init_db import init_db
from concert_finder.api.errors import register_error_handlers
from concert_finder.api.router import api_router

setup_logging()
logger.info("Starting Concert Finder backend")


app = FastAPI(
    title="Concert Finder Backend",
    version="0.1.0"
)

register_error_handlers(app)

# All API routes (venues via router.py)
app.include_router(api_router)

# Init DB after app is created
init_db()

@app.get("/health")
def health():
    logger.debug("Health check hit")
    return {"status": "ok"}
