import os

bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"
worker_class = "uvicorn.workers.UvicornWorker"

# Batches live in process memory: one worker keeps every status request
# on the process that owns the batch.
workers = int(os.getenv("WEB_CONCURRENCY", "1"))
timeout = 900             # a ?wait=true batch polls jobs for up to JOB_TIMEOUT_SECONDS per scene
graceful_timeout = 120
keepalive = 75

# Cloud Run/GKE collect stdout
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
