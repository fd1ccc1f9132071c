"""CORS middleware configuration."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from catmap.config import Settings


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """Open CORS posture for the web client; narrow it with CATMAP_CORS_ORIGINS."""
    wildcard = settings.cors_origins == ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        # Browsers refuse credentials with a wildcard origin
        allow_credentials=not wildcard,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id", "Retry-After"],
    )
