"""
Exam Prep Engine - server entry point.

Usage:
    python main.py            # API on 0.0.0.0:8000 (settings from .env / environment)
"""

import logging

from config import Settings


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


if __name__ == "__main__":
    import uvicorn

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run("api.main:app", host="0.0.0.0", port=8000, log_level=settings.log_level.lower())
