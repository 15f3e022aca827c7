"""
GymFlow Celery Configuration
Periodic scheduler tick and trigger sweep, plus on-demand cancellation tasks.
"""
from celery import Celery
from kombu import Exchange, Queue

from gymflow.config import settings

celery_app = Celery(
    'gymflow',
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=['gymflow.tasks.flow_tasks']
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    worker_prefetch_multiplier=1,

    task_queues=(
        Queue('flows', Exchange('flows'), routing_key='flows'),
        Queue('default', Exchange('default'), routing_key='default'),
    ),
    task_default_queue='default',
    task_default_exchange='default',
    task_default_routing_key='default',

    # A worker lost mid-task leaves its run lease to expire; redelivery is safe
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_soft_time_limit=settings.LEASE_SECONDS,
    task_time_limit=settings.LEASE_SECONDS * 2,

    result_expires=3600,

    beat_schedule={
        'flow-scheduler-tick': {
            'task': 'gymflow.tasks.flow_tasks.scheduler_tick',
            'schedule': settings.SCHEDULER_TICK_SECONDS,
        },
        'flow-trigger-sweep': {
            'task': 'gymflow.tasks.flow_tasks.trigger_sweep',
            'schedule': settings.TRIGGER_SWEEP_SECONDS,
        },
    },
)

celery_app.conf.task_routes = {
    'gymflow.tasks.flow_tasks.scheduler_tick': {'queue': 'flows'},
    'gymflow.tasks.flow_tasks.trigger_sweep': {'queue': 'flows'},
}
