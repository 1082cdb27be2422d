import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .booking_api import router as booking_router
from .core.config import get_settings
from .core.db import init_models


settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Campus Booking Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(booking_router)


@app.on_event("startup")
async def on_startup():
    await init_models()
    logger.info("Database tables ready")


@app.get("/")
async def read_root():
    return {"message": "Campus Booking Backend running"}
