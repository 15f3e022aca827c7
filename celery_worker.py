#!/usr/bin/env python3
"""
Flow worker + beat:
    celery -A celery_worker worker -B -Q flows,default --loglevel=info
"""
from gymflow.celery_config import celery_app  # noqa: F401

if __name__ == '__main__':
    celery_app.start()
