"""
Gunicorn configuration for production deployment

The notification delivery queue lives in process memory, so the API runs a
single worker: each extra worker would own a separate queue and a shutdown of
one worker would drop only its own pending emails.
"""
import os

# Server socket
bind = os.getenv("BIND", "0.0.0.0:8000")
backlog = 2048

# Worker processes
workers = 1
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000

# Worker lifecycle: no max_requests recycling, a restart drops queued emails

# Timeouts
timeout = 30  # 30 seconds for request timeout
keepalive = 5  # Keep connections alive for 5 seconds
graceful_timeout = 30  # Must exceed DELIVERY_SHUTDOWN_GRACE_SECONDS

# Process naming
proc_name = "marketplace_api"

# Server mechanics
daemon = False  # Don't run as daemon (Docker handles this)
pidfile = None
umask = 0
user = None
group = None
tmp_upload_dir = None

# Logging
accesslog = "-"  # Log to stdout
errorlog = "-"   # Log to stderr
loglevel = os.getenv("LOG_LEVEL", "info").lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'


# Server hooks
def on_starting(server):
    """Called just before the master process is initialized."""
    server.log.info("Starting Gunicorn server")


def worker_int(worker):
    """Called when a worker receives the SIGINT or SIGQUIT signal."""
    worker.log.info("Worker received INT or QUIT signal, draining delivery queue")
