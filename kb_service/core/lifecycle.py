"""Lifecycle management for applications embedding the service."""
from contextlib import asynccontextmanager
from fastapi import FastAPI
from kb_service.core.config import settings
from kb_service.core.logging import get_logger, setup_logging
from kb_service.core.container import ServiceContainer, set_container

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the service container on startup and tear it down on shutdown.

    Route handlers reach the service through ``app.state.knowledge_base``.
    """
    setup_logging()
    logger.info("Starting knowledge base service...")

    container = ServiceContainer()

    try:
        await container.initialize(settings, start_cleanup=True)

        # Set global container for module-level access
        set_container(container)

        app.state.container = container
        app.state.knowledge_base = container.knowledge_base

        logger.info("Knowledge base service started successfully")

    except Exception as e:
        logger.error(f"Failed to initialize services: {e}")
        raise

    yield

    logger.info("Shutting down knowledge base service...")
    await container.shutdown()
    logger.info("Knowledge base service shut down")
