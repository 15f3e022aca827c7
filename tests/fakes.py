"""
In-memory stand-ins for the dispatcher, member directory, tag store and clock.
"""
from datetime import timedelta

from gymflow.services.automation.exceptions import DataUnavailableError, TagStoreError
from gymflow.services.delivery import DeliveryResult


class FakeDispatcher:
    """Records sends; queue exceptions or results in `script` to fail the next calls."""

    def __init__(self):
        self.sent = []
        self.script = []
        self.on_send = None

    def send(self, channel, to, subject, body, idempotency_key=None):
        if self.on_send:
            self.on_send()
        if self.script:
            outcome = self.script.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        self.sent.append({
            'channel': channel,
            'to': to,
            'subject': subject,
            'body': body,
            'idempotency_key': idempotency_key,
        })
        return DeliveryResult(delivered=True, provider_id=f'msg-{len(self.sent)}')


class FakeMemberDirectory:

    def __init__(self):
        self.members = {}
        self.unavailable = set()

    def add(self, *members):
        for snapshot in members:
            self.members[snapshot.id] = snapshot

    def list_member_ids(self, gym_id=None):
        return sorted(
            member_id for member_id, snapshot in self.members.items()
            if gym_id is None or snapshot.gym_id == gym_id
        )

    def get_member(self, member_id):
        if member_id in self.unavailable:
            raise DataUnavailableError(f"member {member_id} unavailable")
        return self.members.get(member_id)


class FakeTagStore:

    def __init__(self):
        self.tags = set()
        self.broken = False

    def add_tag(self, member_id, tag_id):
        if self.broken:
            raise TagStoreError('tag store down')
        if (member_id, tag_id) in self.tags:
            return False
        self.tags.add((member_id, tag_id))
        return True

    def remove_tag(self, member_id, tag_id):
        if self.broken:
            raise TagStoreError('tag store down')
        if (member_id, tag_id) not in self.tags:
            return False
        self.tags.discard((member_id, tag_id))
        return True




class FakeClock:
    """Wall clock that only moves when a test advances it."""

    def __init__(self, start):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, seconds):
        self.current += timedelta(seconds=seconds)
