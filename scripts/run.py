#!/usr/bin/env python3
"""Script to run the attendance API using Uvicorn."""

import os

import uvicorn

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

if __name__ == "__main__":
    # Get host and port from environment variables or use defaults
    APP_HOST = os.getenv("APP_HOST", "127.0.0.1")
    APP_PORT = int(os.getenv("APP_PORT", "8000"))
    APP_RELOAD = os.getenv("APP_RELOAD", "False").lower() in ("true", "1", "t")
    APP_LOG_LEVEL = os.getenv("APP_LOG_LEVEL", "info")

    print(f"Starting attendance API on {APP_HOST}:{APP_PORT} (reload={APP_RELOAD})")

    uvicorn.run(
        "main:app",
        host=APP_HOST,
        port=APP_PORT,
        reload=APP_RELOAD,
        log_level=APP_LOG_LEVEL,
        app_dir=PROJECT_ROOT,
        reload_dirs=[PROJECT_ROOT] if APP_RELOAD else None,
    )
