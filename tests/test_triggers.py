from datetime import date, datetime, timedelta
from types import SimpleNamespace

import pytest

from factories import NOW, email_step, member
from gymflow.models import FlowRun
from gymflow.services.automation.exceptions import ConfigurationError
from gymflow.services.automation.run_manager import FlowRunManager, TriggerCandidate
from gymflow.services.automation.triggers import (
    TriggerEvaluator,
    match_birthday,
    match_membership_expiring,
    match_new_signup,
    match_no_checkin,
)

SETTINGS = {'NEW_SIGNUP_WINDOW_HOURS': 48}


def _flow(trigger_value=14):
    return SimpleNamespace(name='flow', trigger_type='TEST', trigger_value=trigger_value)


@pytest.fixture
def manager(session):
    return FlowRunManager(session)


@pytest.fixture
def evaluator(session, directory, manager):
    return TriggerEvaluator(session, directory, manager, settings=SETTINGS)


class TestMatchers:

    def test_no_checkin_uses_last_check_in(self):
        lapsed = member(last_check_in_at=NOW - timedelta(days=20))
        regular = member(last_check_in_at=NOW - timedelta(days=3))

        match = match_no_checkin(_flow(14), lapsed, NOW, SETTINGS)

        assert match.matched_value == 20
        assert match.episode_start == NOW - timedelta(days=20)
        assert match_no_checkin(_flow(14), regular, NOW, SETTINGS) is None

    def test_no_checkin_falls_back_to_join_date(self):
        never_came = member(joined_at=NOW - timedelta(days=15), last_check_in_at=None)

        assert match_no_checkin(_flow(14), never_came, NOW, SETTINGS).matched_value == 15

    def test_no_checkin_ignores_inactive_memberships(self):
        frozen = member(membership_status='FROZEN', last_check_in_at=NOW - timedelta(days=60))

        assert match_no_checkin(_flow(14), frozen, NOW, SETTINGS) is None

    def test_no_checkin_requires_trigger_value(self):
        with pytest.raises(ConfigurationError):
            match_no_checkin(_flow(None), member(), NOW, SETTINGS)

    def test_membership_expiring_window(self):
        soon = member(current_period_end=NOW + timedelta(days=10), subscription_status='ACTIVE')
        later = member(current_period_end=NOW + timedelta(days=20), subscription_status='ACTIVE')
        cancelled = member(current_period_end=NOW + timedelta(days=5), subscription_status='CANCELLED')

        match = match_membership_expiring(_flow(14), soon, NOW, SETTINGS)

        assert match.matched_value == 10
        assert match.episode_start == NOW - timedelta(days=4)
        assert match_membership_expiring(_flow(14), later, NOW, SETTINGS) is None
        assert match_membership_expiring(_flow(14), cancelled, NOW, SETTINGS) is None

    def test_new_signup_window(self):
        fresh = member(joined_at=NOW - timedelta(hours=10))
        stale = member(joined_at=NOW - timedelta(days=3))

        assert match_new_signup(_flow(None), fresh, NOW, SETTINGS).episode_start == fresh.joined_at
        assert match_new_signup(_flow(None), stale, NOW, SETTINGS) is None

    def test_birthday_matches_month_and_day(self):
        born = member(date_of_birth=date(1990, 3, 1))

        match = match_birthday(_flow(None), born, NOW, SETTINGS)

        assert match.matched_value == 34
        assert match.episode_start == datetime(2024, 3, 1)
        assert match_birthday(_flow(None), born, NOW + timedelta(days=1), SETTINGS) is None

    def test_leap_day_birthday_fires_on_feb_28_in_common_years(self):
        leapling = member(date_of_birth=date(2000, 2, 29))

        assert match_birthday(_flow(None), leapling, datetime(2023, 2, 28, 8), SETTINGS) is not None
        assert match_birthday(_flow(None), leapling, datetime(2024, 2, 28, 8), SETTINGS) is None
        assert match_birthday(_flow(None), leapling, datetime(2024, 2, 29, 8), SETTINGS) is not None


class TestTriggerEvaluator:

    def test_win_back_enrolls_lapsed_member_without_open_run(self, session, evaluator, manager, directory, make_flow):
        directory.add(
            member('x', last_check_in_at=NOW - timedelta(days=20)),
            member('y', last_check_in_at=NOW - timedelta(days=20)),
            member('z', last_check_in_at=NOW - timedelta(days=2)),
        )
        flow = make_flow([email_step()], trigger_type='NO_CHECKIN', trigger_value=14)
        manager.enroll(TriggerCandidate(member_id='y', flow_id=flow.id), NOW - timedelta(days=1))

        runs = evaluator.sweep(NOW)

        assert [run.member_id for run in runs] == ['x']
        assert session.query(FlowRun).filter_by(member_id='y').count() == 1

    def test_member_is_not_reenrolled_for_the_same_lapse(self, session, evaluator, directory, make_flow):
        lapsed = member('x', last_check_in_at=NOW - timedelta(days=20))
        directory.add(lapsed)
        make_flow([email_step()], trigger_type='NO_CHECKIN', trigger_value=14)
        run = evaluator.sweep(NOW)[0]
        run.status = 'COMPLETED'
        session.commit()

        assert evaluator.sweep(NOW + timedelta(days=1)) == []

        # Comes back, then lapses again
        lapsed.last_check_in_at = NOW + timedelta(days=2)
        assert len(evaluator.sweep(NOW + timedelta(days=20))) == 1

    def test_unavailable_member_does_not_block_others(self, evaluator, directory, make_flow):
        directory.add(
            member('a', last_check_in_at=NOW - timedelta(days=30)),
            member('b', last_check_in_at=NOW - timedelta(days=30)),
        )
        directory.unavailable.add('a')
        make_flow([email_step()], trigger_type='NO_CHECKIN', trigger_value=14)

        runs = evaluator.sweep(NOW)

        assert [run.member_id for run in runs] == ['b']

    def test_flow_without_trigger_value_is_skipped(self, evaluator, directory, make_flow):
        directory.add(member('a', last_check_in_at=NOW - timedelta(days=30)))
        broken = make_flow([email_step()], trigger_type='NO_CHECKIN', trigger_value=None, name='Broken')
        healthy = make_flow([email_step()], trigger_type='NO_CHECKIN', trigger_value=7, name='Healthy')

        candidates = evaluator.evaluate(NOW)

        assert [c.flow_id for c in candidates] == [healthy.id]
        assert broken.id not in {c.flow_id for c in candidates}

    def test_inactive_flows_and_other_gyms_are_ignored(self, evaluator, directory, make_flow):
        directory.add(
            member('a', last_check_in_at=NOW - timedelta(days=30)),
            member('b', gym_id='gym-2', last_check_in_at=NOW - timedelta(days=30)),
        )
        make_flow([email_step()], trigger_type='NO_CHECKIN', trigger_value=14, is_active=False)
        active = make_flow([email_step()], trigger_type='NO_CHECKIN', trigger_value=14, gym_id='gym-2')

        candidates = evaluator.evaluate(NOW)

        assert [(c.member_id, c.flow_id) for c in candidates] == [('b', active.id)]

    def test_custom_flow_uses_predicate(self, session, directory, manager, make_flow):
        directory.add(member('a', first_name='Ana'), member('b', first_name='Ben'))
        flow = make_flow([email_step()], trigger_type='CUSTOM', trigger_value=None)
        evaluator = TriggerEvaluator(
            session, directory, manager,
            custom_predicate=lambda flow, m, now: 'vip' if m.first_name == 'Ana' else None,
            settings=SETTINGS,
        )

        candidates = evaluator.evaluate(NOW)

        assert [(c.member_id, c.flow_id, c.matched_value) for c in candidates] == [('a', flow.id, 'vip')]

    def test_raising_custom_predicate_does_not_stop_the_sweep(self, session, directory, manager, make_flow):
        directory.add(
            member('a', last_check_in_at=NOW - timedelta(days=3)),
            member('b', last_check_in_at=NOW - timedelta(days=20)),
        )
        make_flow([email_step()], trigger_type='CUSTOM', trigger_value=None)
        win_back = make_flow([email_step()], trigger_type='NO_CHECKIN', trigger_value=14)

        def loyalty_predicate(flow, m, now):
            if m.id == 'a':
                raise KeyError('loyalty_points')
            return None

        evaluator = TriggerEvaluator(session, directory, manager, custom_predicate=loyalty_predicate, settings=SETTINGS)

        runs = evaluator.sweep(NOW)

        assert [(run.member_id, run.flow_id) for run in runs] == [('b', win_back.id)]

    def test_custom_flow_without_predicate_enrolls_nobody(self, evaluator, directory, make_flow):
        directory.add(member('a'))
        make_flow([email_step()], trigger_type='CUSTOM', trigger_value=None)

        assert evaluator.evaluate(NOW) == []

    def test_birthday_flow_runs_once_per_day(self, session, evaluator, directory, make_flow):
        directory.add(member('a', date_of_birth=date(1990, 3, 1)))
        make_flow([email_step()], trigger_type='BIRTHDAY', trigger_value=None)
        run = evaluator.sweep(NOW)[0]
        run.status = 'COMPLETED'
        session.commit()

        assert evaluator.sweep(NOW + timedelta(hours=6)) == []
