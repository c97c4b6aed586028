import logging
from typing import Optional

from fastapi import FastAPI

from .config import Settings, load_settings
from .models_loader import ClientRegistry
from .review.api import ReviewRegistry, review_error_handler, router as review_router
from .review.errors import ReviewError
from .review.judgment.engine import OpenAIDrawingAnalyst
from .review.workflow import ReviewWorkflow


def create_app(analyst=None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    logging.basicConfig(level=settings.log_level)
    if analyst is None:
        analyst = OpenAIDrawingAnalyst(ClientRegistry(), settings)

    app = FastAPI(title="IsoGuard Review")
    app.state.reviews = ReviewRegistry(lambda: ReviewWorkflow(analyst))
    app.add_exception_handler(ReviewError, review_error_handler)
    app.include_router(review_router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
