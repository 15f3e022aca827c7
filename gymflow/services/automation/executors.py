"""
Flow Step Executors
One executor per action type, resolved through a registry keyed by the
step's action_type.
"""
from dataclasses import dataclass
import logging
from typing import Dict, Optional

from gymflow.models.flows import ActionType, Channel
from gymflow.models.runs import StepOutcome
from .exceptions import PermanentDeliveryError, TagStoreError, TransientDeliveryError
from .template_renderer import build_context, render

logger = logging.getLogger(__name__)


@dataclass
class StepResult:
    outcome: str
    detail: Optional[str] = None
    retryable: bool = False
    provider_message_id: Optional[str] = None

    @classmethod
    def success(cls, detail=None, provider_message_id=None):
        return cls(StepOutcome.SUCCESS.value, detail, provider_message_id=provider_message_id)

    @classmethod
    def skipped(cls, detail):
        return cls(StepOutcome.SKIPPED.value, detail)

    @classmethod
    def failed(cls, detail, retryable=False):
        return cls(StepOutcome.FAILED.value, detail, retryable=retryable)

    @property
    def succeeded(self):
        return self.outcome == StepOutcome.SUCCESS.value


class StepExecutor:
    """Executors expose `execute(run, step, member) -> StepResult`."""

    needs_member = False

    def execute(self, run, step, member) -> StepResult:
        raise NotImplementedError


class _SendMessageExecutor(StepExecutor):
    needs_member = True
    channel = None

    def __init__(self, dispatcher, default_gym_name=None):
        self.dispatcher = dispatcher
        self.default_gym_name = default_gym_name

    def recipient(self, member):
        raise NotImplementedError

    def execute(self, run, step, member) -> StepResult:
        to = self.recipient(member)
        if not to:
            return StepResult.skipped(f"member {member.id} has no {self.channel.lower()} address")

        context = build_context(member, self.default_gym_name)
        subject = render(step.subject, context) if self.channel == Channel.EMAIL.value else None
        body = render(step.content, context)

        try:
            result = self.dispatcher.send(
                self.channel,
                to,
                subject,
                body,
                idempotency_key=f"{run.id}:{step.order}",
            )
        except TransientDeliveryError as e:
            logger.warning(f"Transient {self.channel} failure for run {run.id}: {e}")
            return StepResult.failed(str(e), retryable=True)
        except PermanentDeliveryError as e:
            logger.error(f"Permanent {self.channel} failure for run {run.id}: {e}")
            return StepResult.failed(str(e), retryable=False)

        if result.delivered:
            return StepResult.success(provider_message_id=result.provider_id)
        return StepResult.failed(result.error or 'not delivered', retryable=not result.permanent)


class SendEmailExecutor(_SendMessageExecutor):
    channel = Channel.EMAIL.value

    def recipient(self, member):
        return member.email


class SendSmsExecutor(_SendMessageExecutor):
    channel = Channel.SMS.value

    def recipient(self, member):
        return member.phone


class WaitExecutor(StepExecutor):
    """The scheduler owns wait_days; completing a wait has no side effect."""

    def execute(self, run, step, member) -> StepResult:
        return StepResult.success()


class AddTagExecutor(StepExecutor):

    def __init__(self, tag_store):
        self.tag_store = tag_store

    def execute(self, run, step, member) -> StepResult:
        try:
            added = self.tag_store.add_tag(run.member_id, step.tag_id)
        except TagStoreError as e:
            return StepResult.failed(str(e))
        return StepResult.success(None if added else 'tag already applied')


class RemoveTagExecutor(StepExecutor):

    def __init__(self, tag_store):
        self.tag_store = tag_store

    def execute(self, run, step, member) -> StepResult:
        try:
            removed = self.tag_store.remove_tag(run.member_id, step.tag_id)
        except TagStoreError as e:
            return StepResult.failed(str(e))
        return StepResult.success(None if removed else 'tag not applied')


def build_executor_registry(dispatcher, tag_store, default_gym_name=None) -> Dict[str, StepExecutor]:
    return {
        ActionType.SEND_EMAIL.value: SendEmailExecutor(dispatcher, default_gym_name),
        ActionType.SEND_SMS.value: SendSmsExecutor(dispatcher, default_gym_name),
        ActionType.WAIT.value: WaitExecutor(),
        ActionType.ADD_TAG.value: AddTagExecutor(tag_store),
        ActionType.REMOVE_TAG.value: RemoveTagExecutor(tag_store),
    }
