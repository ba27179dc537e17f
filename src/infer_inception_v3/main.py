"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from infer_inception_v3.api.routes import router
from infer_inception_v3.config import Settings, get_settings
from infer_inception_v3.ml.inference import InferencePool
from infer_inception_v3.ml.model_manager import DnnModelManager
from infer_inception_v3.ml.params import InceptionV3Param
from infer_inception_v3.plugin import InceptionV3Interface

logger = logging.getLogger(__name__)


def init_state(app: FastAPI, settings: Settings) -> None:
    """Build the plugin objects the routes rely on and attach them to ``app.state``."""
    model_manager = DnnModelManager(settings)
    interface = InceptionV3Interface(model_manager)
    factory = interface.get_process_factory()

    param = InceptionV3Param(framework=settings.framework, backend=settings.backend, target=settings.target)
    task = factory.create(param)
    widget = interface.get_widget_factory().create(param)
    widget.connect_apply(task.set_param)

    app.state.settings = settings
    app.state.model_manager = model_manager
    app.state.factory = factory
    app.state.task = task
    app.state.widget = widget
    app.state.inference_pool = InferencePool(task, settings)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting infer_inception_v3 (framework=%s, backend=%s, target=%s, max_concurrent=%s)",
        settings.framework,
        settings.backend,
        settings.target,
        settings.max_concurrent,
    )

    init_state(app, settings)

    logger.info("infer_inception_v3 ready")
    yield

    logger.info("Shutting down infer_inception_v3")
    app.state.inference_pool.shutdown()
    app.state.model_manager.shutdown()
    logger.info("infer_inception_v3 shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="infer_inception_v3",
        description="Inception V3 image classification plugin exposed over HTTP",
        version="1.2.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()
