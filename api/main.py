import logging

from fastapi import FastAPI

from api.routers import api_compare
from envdrift.logging_config import setup_logging

app = FastAPI(title="envdrift")

setup_logging()
logger = logging.getLogger(__name__)

app.include_router(api_compare.router)


@app.get("/health")
def health():
    return {"status": "ok"}
