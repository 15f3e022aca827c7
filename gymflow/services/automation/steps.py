"""
Step snapshots and validation.

A run executes against the step list copied at enrollment, so edits made to a
live flow in the dashboard never shift an in-flight run onto a different step.
"""
from dataclasses import asdict, dataclass
import json
from typing import List, Optional

from gymflow.models.flows import ActionType, MESSAGE_ACTIONS, TAG_ACTIONS
from .exceptions import ConfigurationError


@dataclass(frozen=True)
class StepSnapshot:
    order: int
    action_type: str
    channel: Optional[str] = None
    subject: Optional[str] = None
    content: Optional[str] = None
    wait_days: Optional[int] = None
    tag_id: Optional[str] = None

    @classmethod
    def from_model(cls, step):
        return cls(
            order=step.order,
            action_type=step.action_type,
            channel=step.channel,
            subject=step.subject,
            content=step.content,
            wait_days=step.wait_days,
            tag_id=step.tag_id,
        )

    @classmethod
    def from_dict(cls, data):
        return cls(
            order=data.get('order'),
            action_type=data.get('action_type'),
            channel=data.get('channel'),
            subject=data.get('subject'),
            content=data.get('content'),
            wait_days=data.get('wait_days'),
            tag_id=data.get('tag_id'),
        )

    @property
    def is_wait(self):
        return self.action_type == ActionType.WAIT.value


def snapshot_steps(flow) -> List[StepSnapshot]:
    return [StepSnapshot.from_model(step) for step in sorted(flow.steps, key=lambda s: s.order)]


def dump_steps(steps: List[StepSnapshot]) -> str:
    return json.dumps([asdict(step) for step in steps])


def load_steps(raw) -> List[StepSnapshot]:
    if isinstance(raw, str):
        raw = json.loads(raw or '[]')
    return [StepSnapshot.from_dict(item) for item in raw or []]


def validate_step(step: StepSnapshot, index: int) -> None:
    """Raise ConfigurationError when a step breaks the definition invariants."""
    if step.order != index:
        raise ConfigurationError(f"step {index} has order {step.order}")

    valid_actions = {action.value for action in ActionType}
    if step.action_type not in valid_actions:
        raise ConfigurationError(f"step {index} has unknown action type {step.action_type!r}")

    if step.action_type == ActionType.WAIT.value:
        if not isinstance(step.wait_days, int) or step.wait_days <= 0:
            raise ConfigurationError(f"wait step {index} needs wait_days > 0")
    elif step.action_type in {a.value for a in MESSAGE_ACTIONS}:
        if not (step.content or '').strip():
            raise ConfigurationError(f"message step {index} has no content")
    elif step.action_type in {a.value for a in TAG_ACTIONS}:
        if not step.tag_id:
            raise ConfigurationError(f"tag step {index} has no tag_id")


def validate_steps(steps: List[StepSnapshot]) -> None:
    for index, step in enumerate(steps):
        validate_step(step, index)
