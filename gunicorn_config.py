"""
Gunicorn Production Configuration
"""
import multiprocessing
import os

# Server socket
bind = os.getenv('GYMFLOW_BIND', '0.0.0.0:5002')
backlog = 2048

# The API only serves audit reads and admin hooks
workers = min(multiprocessing.cpu_count() * 2 + 1, 8)
worker_class = "sync"
timeout = 60
keepalive = 5

# Process naming
proc_name = "gymflow"

# Logging
accesslog = os.getenv('GYMFLOW_ACCESS_LOG', '-')
errorlog = os.getenv('GYMFLOW_ERROR_LOG', '-')
loglevel = "info"
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

# Server mechanics
daemon = False
umask = 0
