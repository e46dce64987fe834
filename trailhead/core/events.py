"""
Application lifecycle events
Handles startup and shutdown tasks
"""

from fastapi import FastAPI
import logging
from contextlib import asynccontextmanager

from .database import init_db, close_db
from .logging import setup_logging
from .config import settings

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager
    Handles startup and shutdown events
    """
    setup_logging()
    logger.info("Starting %s...", settings.APP_NAME)
    
    try:
        if settings.ENVIRONMENT != "test":
            await init_db()
            logger.info("Database initialized")
        
        logger.info("%s started successfully", settings.APP_NAME)
        
        yield
        
    finally:
        logger.info("Shutting down %s...", settings.APP_NAME)
        await close_db()
        logger.info("%s shutdown complete", settings.APP_NAME)
