"""
Gunicorn Configuration

Uvicorn workers under Gunicorn. Rate limiting counters are per worker.
"""

import multiprocessing
import os

# Server socket
bind = os.getenv("BIND", "0.0.0.0:8000")

# Worker processes
workers = int(os.getenv("WORKERS", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
max_requests = 5000
max_requests_jitter = 500
# Webhook handlers and prefetch run inside requests
timeout = 60
graceful_timeout = 30
keepalive = 5

proc_name = "ai-nutritionist-api"

# Logging goes through structlog on stdout
errorlog = "-"
accesslog = None
loglevel = os.getenv("LOG_LEVEL", "info").lower()


def post_fork(server, worker):
    server.log.info("Worker spawned (pid: %s)", worker.pid)
