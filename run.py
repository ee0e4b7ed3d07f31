"""
Uvicorn server runner with configurable logging.

Usage:
    python run.py

Environment variables (set in .env file):
    DEBUG=true - Enable debug logging
    DATA_DIR=./data - Persist repositories, proposals and run logs as JSON
    PORT=8000 - Set server port (default: 8000)
    HOST=127.0.0.1 - Set server host (default: 127.0.0.1)
"""

import os

import uvicorn
from autopilot.config import get_settings

if __name__ == "__main__":
    settings = get_settings()

    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))
    log_level = "debug" if settings.debug else "info"

    print(f"Starting {settings.app_name} server...")
    print(f"Host: {host}, Port: {port}, Log Level: {log_level}")
    print(f"Data directory: {settings.data_dir or '(in-memory only)'}")
    print(f"Docs available at: http://{host}:{port}/docs")

    # No reload: a reloader would run the scheduler in a second process
    uvicorn.run(
        "autopilot.main:app",
        host=host,
        port=port,
        log_level=log_level,
        access_log=True,
    )
