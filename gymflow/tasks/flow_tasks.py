"""
GymFlow Flow Tasks
"""
import logging

from sqlalchemy.exc import SQLAlchemyError

from gymflow.celery_config import celery_app
from gymflow.services.automation.engine import build_engine
from gymflow.services.automation.run_manager import FlowRunManager
from gymflow.services.automation.scheduler import default_worker_id

logger = logging.getLogger(__name__)

WORKER_ID = default_worker_id()

_flask_app = None


def get_flask_app():
    """Flask app for DB access inside the worker process"""
    global _flask_app
    if _flask_app is None:
        from gymflow import create_app
        _flask_app = create_app()
    return _flask_app


@celery_app.task(name='gymflow.tasks.flow_tasks.scheduler_tick')
def scheduler_tick():
    """Advance all due flow runs"""
    app = get_flask_app()
    with app.app_context():
        engine = build_engine(app, worker_id=WORKER_ID)
        return engine.scheduler.tick()


@celery_app.task(name='gymflow.tasks.flow_tasks.trigger_sweep')
def trigger_sweep():
    """Match members against active flow triggers and enroll them"""
    app = get_flask_app()
    with app.app_context():
        engine = build_engine(app, worker_id=WORKER_ID)
        runs = engine.trigger_evaluator.sweep()
        logger.info(f"Trigger sweep enrolled {len(runs)} members")
        return {'enrolled': len(runs), 'run_ids': [run.id for run in runs]}


@celery_app.task(bind=True, max_retries=5, default_retry_delay=30,
                 name='gymflow.tasks.flow_tasks.cancel_flow_runs')
def cancel_flow_runs(self, flow_id, reason='flow_deactivated'):
    app = get_flask_app()
    with app.app_context():
        from gymflow import db
        try:
            cancelled = FlowRunManager(db.session).cancel_runs_for_flow(flow_id, reason)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.warning(f"Cancelling runs of flow {flow_id} failed, retrying: {e}")
            raise self.retry(exc=e)
        return {'flow_id': flow_id, 'cancelled': cancelled}


@celery_app.task(bind=True, max_retries=5, default_retry_delay=30,
                 name='gymflow.tasks.flow_tasks.cancel_member_runs')
def cancel_member_runs(self, member_id, reason='membership_cancelled'):
    app = get_flask_app()
    with app.app_context():
        from gymflow import db
        try:
            cancelled = FlowRunManager(db.session).cancel_runs_for_member(member_id, reason)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.warning(f"Cancelling runs of member {member_id} failed, retrying: {e}")
            raise self.retry(exc=e)
        return {'member_id': member_id, 'cancelled': cancelled}
