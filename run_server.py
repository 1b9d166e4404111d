#!/usr/bin/env python
"""
Server Entry Point

Usage:
    Development:  python run_server.py --dev
    Production:   python run_server.py
    Gunicorn:     python run_server.py --gunicorn
                  (same as: gunicorn nutritionist.main:app -c gunicorn.conf.py)
"""

import argparse
import os
import subprocess

import uvicorn

from nutritionist.config import get_settings


def run_dev_server(port: int) -> None:
    """Development server with auto-reload."""
    settings = get_settings()
    uvicorn.run(
        "nutritionist.main:app",
        host=settings.api_host,
        port=port,
        reload=True,
        reload_dirs=["nutritionist"],
        log_level="debug",
    )


def run_prod_server(port: int) -> None:
    """Uvicorn with several workers, behind a proxy."""
    settings = get_settings()
    uvicorn.run(
        "nutritionist.main:app",
        host=settings.api_host,
        port=port,
        workers=int(os.getenv("WORKERS", 4)),
        log_level=settings.monitoring.log_level.lower(),
        proxy_headers=True,
        forwarded_allow_ips="*",
        server_header=False,
    )


def run_gunicorn(port: int) -> None:
    env = {**os.environ, "BIND": f"0.0.0.0:{port}"}
    subprocess.run(["gunicorn", "nutritionist.main:app", "-c", "gunicorn.conf.py"], env=env, check=True)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="AI Nutritionist API Server")
    parser.add_argument("--dev", action="store_true", help="Run in development mode with auto-reload")
    parser.add_argument("--gunicorn", action="store_true", help="Run with Gunicorn (production)")
    parser.add_argument("--port", type=int, default=None, help="Port to run on (default: API_PORT)")
    args = parser.parse_args()

    port = args.port or get_settings().api_port

    if args.dev:
        run_dev_server(port)
    elif args.gunicorn:
        run_gunicorn(port)
    else:
        run_prod_server(port)
