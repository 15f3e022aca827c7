"""
Flow engine wiring: builds the run manager, scheduler and trigger evaluator
from the Flask config and the shared database session.
"""
from gymflow.services.delivery import build_dispatcher
from gymflow.services.members import SqlMemberDirectory
from gymflow.services.tags import SqlTagStore
from .executors import build_executor_registry
from .run_manager import FlowRunManager
from .scheduler import StepScheduler
from .triggers import TriggerEvaluator


class FlowEngine:

    def __init__(self, db_session, config, dispatcher=None, tag_store=None,
                 member_directory=None, custom_predicate=None, worker_id=None):
        self.db = db_session
        self.config = config
        self.dispatcher = dispatcher or build_dispatcher(config)
        self.tag_store = tag_store or SqlTagStore(db_session)
        self.member_directory = member_directory or SqlMemberDirectory(db_session)

        self.run_manager = FlowRunManager(db_session)
        self.executors = build_executor_registry(
            self.dispatcher,
            self.tag_store,
            default_gym_name=config.get('DEFAULT_GYM_NAME'),
        )
        self.scheduler = StepScheduler(
            db_session,
            self.executors,
            self.member_directory,
            lease_seconds=config.get('LEASE_SECONDS', 300),
            max_attempts=config.get('MAX_SEND_ATTEMPTS', 3),
            retry_base_seconds=config.get('RETRY_BASE_SECONDS', 300),
            batch_size=config.get('SCHEDULER_BATCH_SIZE', 200),
            worker_id=worker_id,
        )
        self.trigger_evaluator = TriggerEvaluator(
            db_session,
            self.member_directory,
            self.run_manager,
            custom_predicate=custom_predicate,
            settings=config,
        )


def build_engine(app=None, **overrides):
    """Engine bound to the current (or given) Flask app's config and db session."""
    from flask import current_app
    from gymflow import db

    app = app or current_app
    return FlowEngine(db.session, app.config, **overrides)
