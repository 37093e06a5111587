"""Gunicorn configuration for KIDSHIELD production deployment."""

# Server socket (loopback control surface)
bind = '127.0.0.1:8765'

# One worker: the sinkhole, dispatcher and policy store live in-process
workers = 1
worker_class = 'gthread'
threads = 4

# Timeout
timeout = 120

# Logging
accesslog = '-'
errorlog = '-'
loglevel = 'info'
