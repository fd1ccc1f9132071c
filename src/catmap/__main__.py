"""Run the API with uvicorn: ``python -m catmap``."""

import os

import uvicorn


def main() -> None:
    uvicorn.run(
        "catmap.main:app",
        host=os.environ.get("CATMAP_HOST", "0.0.0.0"),  # noqa: S104
        port=int(os.environ.get("CATMAP_PORT", "8000")),
        log_config=None,
    )


if __name__ == "__main__":
    main()
