"""
Gunicorn configuration for Updraft production deployment.

Usage:
    gunicorn updraft.main:app -c gunicorn.conf.py

STORAGE_BACKEND=memory keeps one private bucket per worker; use s3 when
running more than one worker.
"""

import multiprocessing
import os

# Bind to all interfaces on port 8000
bind = os.getenv("BIND", "0.0.0.0:8000")

# Worker processes: CPU cores * 2 + 1 (Gunicorn recommendation)
workers = int(os.getenv("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))

# Use Uvicorn's ASGI worker for FastAPI
worker_class = "uvicorn.workers.UvicornWorker"

# Update checks are small; slow ones are storage stalls
timeout = 30

# Keep-alive connections (seconds)
keepalive = 5

# Logging
accesslog = "-"  # stdout
errorlog = "-"   # stderr
loglevel = "info"
