"""Middleware registration."""

from fastapi import FastAPI

from catmap.config import Settings
from catmap.middleware.cors import setup_cors
from catmap.middleware.error_handler import setup_error_handlers
from catmap.middleware.logging import setup_logging
from catmap.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware. The last one added is the outermost."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
