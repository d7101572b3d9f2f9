"""
Gunicorn configuration for the emopulse ingestion API.

The webhook only verifies and enqueues, so requests are short; scoring
runs in separate `emopulse worker` processes.
Env vars that override defaults:
  PORT       TCP port to bind
  WORKERS    number of worker processes (default: 2)
"""
import os

bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"

workers = int(os.environ.get("WORKERS", "2"))

# Each worker runs Uvicorn's ASGI event loop inside Gunicorn's process manager.
worker_class = "uvicorn.workers.UvicornWorker"

wsgi_app = "emopulse.main:app"

keepalive = 5

# Slack expects an answer within 3 s; anything near this is already a failure.
timeout = 30

# stdout only; the platform collects it.
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
accesslog = "-"
errorlog = "-"
access_log_format = '%(h)s "%(r)s" %(s)s %(b)sB %(D)sµs'

graceful_timeout = 30
