"""
FastAPI application entry point for the order service.
"""

from __future__ import annotations

import logging

import uvicorn
from fastapi import FastAPI

from khata.config import get_settings
from khata.routes import router


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Khata Book Orders", version="0.1.0")
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
    )
    uvicorn.run(app, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
