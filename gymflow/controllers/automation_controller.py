"""
GymFlow Automation Controller
Audit queries for flow runs and the hooks the dashboard calls when a flow is
switched off or a membership ends.
"""
from flask import Blueprint, current_app, request, jsonify
import logging

import redis
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from gymflow import db
from gymflow.middleware.api_auth import require_service_token
from gymflow.models.runs import FlowRunStatus
from gymflow.services.automation.flow_templates import seed_default_templates
from gymflow.services.automation.run_manager import FlowRunManager

logger = logging.getLogger(__name__)

automation_bp = Blueprint('automation', __name__, url_prefix='/api/automation')

MAX_PAGE_SIZE = 500


def _run_manager():
    return FlowRunManager(db.session)


def get_redis():
    return redis.from_url(current_app.config['REDIS_URL'])


@automation_bp.route('/health')
def engine_health():
    """Database and broker reachability plus the run backlog"""
    checks = {}
    try:
        db.session.execute(text('SELECT 1'))
        checks['database'] = True
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Health check: database unavailable: {e}")
        checks['database'] = False

    try:
        get_redis().ping()
        checks['broker'] = True
    except redis.RedisError as e:
        logger.error(f"Health check: broker unavailable: {e}")
        checks['broker'] = False

    healthy = all(checks.values())
    payload = {'healthy': healthy, 'checks': checks}
    if checks['database']:
        manager = _run_manager()
        payload['runs'] = manager.status_counts()
        payload['needs_review'] = manager.review_count()
    return jsonify(payload), 200 if healthy else 503


# ==================== RUNS ====================

@automation_bp.route('/runs')
@require_service_token
def list_runs():
    """List runs, optionally filtered by flow, member and status"""
    status = request.args.get('status')
    if status and status not in {s.value for s in FlowRunStatus}:
        return jsonify({'error': 'bad_request', 'message': f'Unknown status: {status}'}), 400

    try:
        limit = min(int(request.args.get('limit', 100)), MAX_PAGE_SIZE)
    except ValueError:
        return jsonify({'error': 'bad_request', 'message': 'limit must be an integer'}), 400

    runs = _run_manager().list_runs(
        flow_id=request.args.get('flow_id'),
        member_id=request.args.get('member_id'),
        status=status,
        limit=limit,
    )
    return jsonify({'success': True, 'runs': [run.to_dict() for run in runs]})


@automation_bp.route('/runs/<run_id>')
@require_service_token
def get_run(run_id):
    """Run detail with its step execution records"""
    run = _run_manager().get_run(run_id)
    if not run:
        return jsonify({'error': 'not_found', 'message': 'Run not found'}), 404
    return jsonify({'success': True, 'run': run.to_dict(include_executions=True)})


# ==================== ADMIN HOOKS ====================

@automation_bp.route('/flows/<flow_id>/deactivate', methods=['POST'])
@require_service_token
def deactivate_flow(flow_id):
    """Switch a flow off and cancel its open runs"""
    cancelled = _run_manager().deactivate_flow(flow_id)
    if cancelled is None:
        return jsonify({'error': 'not_found', 'message': 'Flow not found'}), 404
    return jsonify({'success': True, 'cancelled_runs': cancelled})


@automation_bp.route('/flows/<flow_id>/cancel-runs', methods=['POST'])
@require_service_token
def cancel_flow_runs(flow_id):
    """Cancel open runs of a flow that was deleted in the dashboard"""
    data = request.get_json(silent=True) or {}
    cancelled = _run_manager().cancel_runs_for_flow(flow_id, data.get('reason', 'flow_deleted'))
    return jsonify({'success': True, 'cancelled_runs': cancelled})


@automation_bp.route('/members/<member_id>/cancel-runs', methods=['POST'])
@require_service_token
def cancel_member_runs(member_id):
    """Cancel a member's open runs (membership cancelled or member deleted)"""
    data = request.get_json(silent=True) or {}
    cancelled = _run_manager().cancel_runs_for_member(member_id, data.get('reason', 'membership_cancelled'))
    return jsonify({'success': True, 'cancelled_runs': cancelled})


@automation_bp.route('/flows/seed-templates', methods=['POST'])
@require_service_token
def seed_templates():
    """Create the default inactive flow templates for a gym"""
    data = request.get_json(silent=True) or {}
    gym_id = data.get('gym_id')
    if not gym_id:
        return jsonify({'error': 'bad_request', 'message': 'gym_id is required'}), 400

    flows = seed_default_templates(db.session, gym_id)
    if not flows:
        return jsonify({'success': True, 'message': 'Templates already exist', 'flows': []})
    return jsonify({'success': True, 'flows': [flow.to_dict() for flow in flows]}), 201
