"""
HiNATA Server Entry Point

Run with: python main.py
Or with uvicorn: uvicorn app:app --reload
"""

import os

import uvicorn

from hinata.config import Config

if __name__ == "__main__":
    # Use reload only in development
    is_dev = os.getenv("ENVIRONMENT", "development") == "development"
    config = Config.from_env()

    uvicorn.run(
        "app:app",
        host=config.api.host,
        port=config.api.port,
        reload=is_dev,
        log_level=config.logging.level.lower(),
    )
