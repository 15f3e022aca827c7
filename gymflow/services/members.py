"""
GymFlow Member Directory
Read-only access to the dashboard's member, subscription and check-in tables.
"""
from dataclasses import dataclass
from datetime import date, datetime
import logging
from typing import List, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from gymflow.services.automation.exceptions import DataUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class MemberSnapshot:
    id: str
    gym_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    gym_name: Optional[str] = None
    membership_status: Optional[str] = None
    joined_at: Optional[datetime] = None
    date_of_birth: Optional[date] = None
    last_check_in_at: Optional[datetime] = None
    subscription_status: Optional[str] = None
    current_period_end: Optional[datetime] = None


def _as_datetime(value):
    # Raw SQL on SQLite hands back ISO strings instead of datetime objects
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(str(value))


def _as_date(value):
    if value is None or (isinstance(value, date) and not isinstance(value, datetime)):
        return value
    return _as_datetime(value).date()


class SqlMemberDirectory:
    """Member reads for the trigger evaluator and message personalization."""

    MEMBER_SQL = """
        SELECT m.id, m.gym_id, m.first_name, m.last_name, m.email, m.phone,
               m.status, m.joined_at, m.date_of_birth, g.name,
               (SELECT MAX(c.checked_in_at) FROM check_ins c WHERE c.member_id = m.id)
        FROM members m
        LEFT JOIN gyms g ON g.id = m.gym_id
        WHERE m.id = :member_id
    """

    SUBSCRIPTION_SQL = """
        SELECT status, current_period_end
        FROM subscriptions
        WHERE member_id = :member_id
        ORDER BY current_period_end DESC
        LIMIT 1
    """

    def __init__(self, db_session):
        self.db = db_session

    def list_member_ids(self, gym_id: Optional[str] = None) -> List[str]:
        query = "SELECT id FROM members"
        params = {}
        if gym_id:
            query += " WHERE gym_id = :gym_id"
            params['gym_id'] = gym_id
        query += " ORDER BY id"

        try:
            result = self.db.execute(text(query), params)
            return [row[0] for row in result]
        except SQLAlchemyError as e:
            self.db.rollback()
            raise DataUnavailableError(f"member list unavailable: {e}") from e

    def get_member(self, member_id: str) -> Optional[MemberSnapshot]:
        try:
            row = self.db.execute(text(self.MEMBER_SQL), {'member_id': member_id}).fetchone()
            if not row:
                return None
            sub_row = self.db.execute(text(self.SUBSCRIPTION_SQL), {'member_id': member_id}).fetchone()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise DataUnavailableError(f"member {member_id} unavailable: {e}") from e

        try:
            return MemberSnapshot(
                id=row[0],
                gym_id=row[1],
                first_name=row[2],
                last_name=row[3],
                email=row[4],
                phone=row[5],
                membership_status=row[6],
                joined_at=_as_datetime(row[7]),
                date_of_birth=_as_date(row[8]),
                gym_name=row[9],
                last_check_in_at=_as_datetime(row[10]),
                subscription_status=sub_row[0] if sub_row else None,
                current_period_end=_as_datetime(sub_row[1]) if sub_row else None,
            )
        except ValueError as e:
            raise DataUnavailableError(f"member {member_id} has malformed dates: {e}") from e
