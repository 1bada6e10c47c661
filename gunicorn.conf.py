"""
Gunicorn configuration.
"""
import os

bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"

# Redemption requests wait on the Shopify discount mutation, which has its
# own timeout well below the worker timeout
workers = int(os.getenv('GUNICORN_WORKERS', '2'))
worker_class = 'sync'
timeout = 60
keepalive = 5

# Logging
accesslog = '-'  # stdout
errorlog = '-'   # stderr
loglevel = os.getenv('LOG_LEVEL', 'info')
capture_output = True

proc_name = 'rewards'

# Preload so the scheduler starts once in the master, not per worker
preload_app = True

graceful_timeout = 30


def on_starting(server):
    print("[Gunicorn] Starting rewards server...")


def on_exit(server):
    print("[Gunicorn] Rewards server shutting down...")
