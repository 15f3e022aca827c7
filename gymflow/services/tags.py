"""
GymFlow Tag Store
Idempotent member tag mutations on the dashboard's member_tags table.
"""
import logging
import uuid

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from gymflow.services.automation.exceptions import TagStoreError
from gymflow.utils.clock import utcnow

logger = logging.getLogger(__name__)

APPLIED_BY = 'automation'


class SqlTagStore:

    def __init__(self, db_session):
        self.db = db_session

    def add_tag(self, member_id: str, tag_id: str) -> bool:
        """Returns True when the tag was newly applied, False if already present."""
        try:
            result = self.db.execute(text("""
                INSERT INTO member_tags (id, member_id, tag_id, applied_by, created_at)
                VALUES (:id, :member_id, :tag_id, :applied_by, :created_at)
                ON CONFLICT (member_id, tag_id) DO NOTHING
            """), {
                'id': str(uuid.uuid4()),
                'member_id': member_id,
                'tag_id': tag_id,
                'applied_by': APPLIED_BY,
                'created_at': utcnow(),
            })
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise TagStoreError(f"could not tag member {member_id} with {tag_id}: {e}") from e

        added = result.rowcount == 1
        if not added:
            logger.debug(f"Member {member_id} already has tag {tag_id}")
        return added

    def remove_tag(self, member_id: str, tag_id: str) -> bool:
        """Returns True when a tag was removed, False if it was not applied."""
        try:
            result = self.db.execute(text("""
                DELETE FROM member_tags WHERE member_id = :member_id AND tag_id = :tag_id
            """), {'member_id': member_id, 'tag_id': tag_id})
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise TagStoreError(f"could not untag member {member_id} from {tag_id}: {e}") from e

        return result.rowcount > 0
