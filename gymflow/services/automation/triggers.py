"""
Flow Trigger Evaluator
Periodic sweep that matches members against active flow triggers and hands
the matches to the run manager.

Every match carries an episode start: the moment the matched condition began
(the last check-in for NO_CHECKIN, the start of the reminder window for
MEMBERSHIP_EXPIRING, the signup for NEW_SIGNUP, midnight for BIRTHDAY). A
member who was already enrolled at or after that moment is not enrolled again,
so a win-back flow runs once per inactivity streak and a welcome flow once
per member.
"""
import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Callable, Dict, List, Optional

from celery.exceptions import SoftTimeLimitExceeded

from gymflow.models.flows import AutomatedFlow, TriggerType
from gymflow.utils.clock import start_of_day, utcnow
from .exceptions import ConfigurationError, DataUnavailableError
from .run_manager import TriggerCandidate

logger = logging.getLogger(__name__)

ACTIVE_MEMBERSHIP = 'ACTIVE'
CANCELLED_SUBSCRIPTION = 'CANCELLED'


@dataclass(frozen=True)
class TriggerMatch:
    matched_value: Optional[object]
    episode_start: Optional[datetime]


def _require_days(flow):
    if flow.trigger_value is None or flow.trigger_value < 0:
        raise ConfigurationError(f"flow {flow.name} ({flow.trigger_type}) needs a trigger_value in days")
    return flow.trigger_value


def match_no_checkin(flow, member, now, settings) -> Optional[TriggerMatch]:
    threshold = _require_days(flow)
    if member.membership_status != ACTIVE_MEMBERSHIP:
        return None
    last_seen = member.last_check_in_at or member.joined_at
    if last_seen is None:
        return None
    days_since = (now - last_seen).days
    if days_since < threshold:
        return None
    return TriggerMatch(matched_value=days_since, episode_start=last_seen)


def match_membership_expiring(flow, member, now, settings) -> Optional[TriggerMatch]:
    window_days = _require_days(flow)
    period_end = member.current_period_end
    if period_end is None or member.subscription_status == CANCELLED_SUBSCRIPTION:
        return None
    if not (now <= period_end <= now + timedelta(days=window_days)):
        return None
    days_left = (period_end - now).days
    return TriggerMatch(matched_value=days_left, episode_start=period_end - timedelta(days=window_days))


def match_new_signup(flow, member, now, settings) -> Optional[TriggerMatch]:
    joined_at = member.joined_at
    if joined_at is None:
        return None
    window = timedelta(hours=settings.get('NEW_SIGNUP_WINDOW_HOURS', 48))
    if not (now - window < joined_at <= now):
        return None
    return TriggerMatch(matched_value=joined_at.isoformat(), episode_start=joined_at)


def match_birthday(flow, member, now, settings) -> Optional[TriggerMatch]:
    born = member.date_of_birth
    if born is None:
        return None
    month, day = born.month, born.day
    if month == 2 and day == 29 and not calendar.isleap(now.year):
        day = 28
    if (now.month, now.day) != (month, day):
        return None
    return TriggerMatch(matched_value=now.year - born.year, episode_start=start_of_day(now))


TRIGGER_MATCHERS: Dict[str, Callable] = {
    TriggerType.NO_CHECKIN.value: match_no_checkin,
    TriggerType.MEMBERSHIP_EXPIRING.value: match_membership_expiring,
    TriggerType.NEW_SIGNUP.value: match_new_signup,
    TriggerType.BIRTHDAY.value: match_birthday,
}


class TriggerEvaluator:
    """
    Usage:
        evaluator = TriggerEvaluator(db.session, member_directory, run_manager)
        enrolled = evaluator.sweep()

    custom_predicate(flow, member, now) decides CUSTOM flows; it may return a
    bool or a matched value (None/False means no match).
    """

    def __init__(self, db_session, member_directory, run_manager,
                 custom_predicate: Optional[Callable] = None, settings: Optional[Dict] = None):
        self.db = db_session
        self.member_directory = member_directory
        self.run_manager = run_manager
        self.custom_predicate = custom_predicate
        self.settings = settings or {}

    def evaluate(self, now: Optional[datetime] = None) -> List[TriggerCandidate]:
        now = now or utcnow()
        candidates = []
        members_cache = {}
        member_ids_cache = {}

        flows = self.db.query(AutomatedFlow).filter(AutomatedFlow.is_active.is_(True)).all()
        for flow in flows:
            matcher = self._matcher_for(flow)
            if matcher is None:
                continue

            try:
                member_ids = member_ids_cache.get(flow.gym_id)
                if member_ids is None:
                    member_ids = member_ids_cache[flow.gym_id] = self.member_directory.list_member_ids(flow.gym_id)
            except DataUnavailableError as e:
                logger.error(f"Skipping flow {flow.name}: member list unavailable: {e}")
                continue

            for member_id in member_ids:
                member = self._load_member(member_id, members_cache)
                if member is None:
                    continue

                try:
                    match = matcher(flow, member, now, self.settings)
                except ConfigurationError as e:
                    logger.error(f"Skipping flow {flow.name}: {e}")
                    break
                except DataUnavailableError as e:
                    logger.warning(f"Skipping member {member_id} for flow {flow.name}: {e}")
                    continue
                except SoftTimeLimitExceeded:
                    raise
                except Exception:
                    logger.exception(f"Trigger for flow {flow.name} errored on member {member_id}, skipping")
                    continue
                if match is None:
                    continue

                if self.run_manager.has_open_run(flow.id, member_id):
                    continue
                if match.episode_start is not None:
                    last_enrolled = self.run_manager.last_enrollment_at(flow.id, member_id)
                    if last_enrolled is not None and last_enrolled >= match.episode_start:
                        continue

                candidates.append(TriggerCandidate(
                    member_id=member_id,
                    flow_id=flow.id,
                    matched_value=match.matched_value,
                    episode_start=match.episode_start,
                ))

        logger.info(f"Trigger sweep found {len(candidates)} candidates across {len(flows)} active flows")
        return candidates

    def sweep(self, now: Optional[datetime] = None) -> List:
        """Evaluate triggers and enroll every candidate. Returns the new runs."""
        now = now or utcnow()
        enrolled = []
        for candidate in self.evaluate(now):
            try:
                run = self.run_manager.enroll(candidate, now)
            except SoftTimeLimitExceeded:
                raise
            except Exception:
                self.db.rollback()
                logger.exception(f"Enrollment failed for member {candidate.member_id} in flow {candidate.flow_id}")
                continue
            if run is not None:
                enrolled.append(run)
        return enrolled

    def _matcher_for(self, flow):
        if flow.trigger_type == TriggerType.CUSTOM.value:
            if self.custom_predicate is None:
                logger.debug(f"Flow {flow.name} is CUSTOM but no predicate is configured")
                return None
            return self._match_custom
        matcher = TRIGGER_MATCHERS.get(flow.trigger_type)
        if matcher is None:
            logger.error(f"Flow {flow.name} has unknown trigger type {flow.trigger_type!r}")
        return matcher

    def _match_custom(self, flow, member, now, settings):
        value = self.custom_predicate(flow, member, now)
        if value is None or value is False:
            return None
        return TriggerMatch(matched_value=value, episode_start=None)

    def _load_member(self, member_id, cache):
        if member_id in cache:
            return cache[member_id]
        try:
            member = self.member_directory.get_member(member_id)
        except DataUnavailableError as e:
            logger.warning(f"Skipping member {member_id} this sweep: {e}")
            member = None
        cache[member_id] = member
        return member
