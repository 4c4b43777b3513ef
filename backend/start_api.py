#!/usr/bin/env python3
"""
Dashboard Studio API Startup Script

Runs the FastAPI app with uvicorn in reload mode for local development.
"""

from pathlib import Path

import uvicorn


def main():
    """Start the Dashboard Studio API server."""
    print("Starting Dashboard Studio API Server...")
    print("   Swagger UI:  http://localhost:8000/docs")
    print("")

    if not Path(".env").exists():
        print("WARNING: No .env file found; DATABASE_URL and AGGREGATION_API_BASE_URL")
        print("   fall back to their defaults.")
        print("")

    uvicorn.run(
        "dashboard_studio.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["dashboard_studio"],
        log_level="info",
    )


if __name__ == "__main__":
    main()
