"""
Default Flow Templates
Starter flows created (inactive) for a gym the first time automation is opened.
"""
import logging
from typing import List

from gymflow.models.flows import ActionType, AutomatedFlow, Channel, FlowStep, TriggerType
from .steps import StepSnapshot, validate_steps

logger = logging.getLogger(__name__)


def _email(subject, content):
    return {'action_type': ActionType.SEND_EMAIL.value, 'channel': Channel.EMAIL.value,
            'subject': subject, 'content': content}


def _sms(content):
    return {'action_type': ActionType.SEND_SMS.value, 'channel': Channel.SMS.value, 'content': content}


def _wait(days):
    return {'action_type': ActionType.WAIT.value, 'wait_days': days}


DEFAULT_TEMPLATES = [
    {
        'name': 'Win-Back Inactive Members',
        'description': "Re-engage members who haven't visited in 14 days",
        'trigger_type': TriggerType.NO_CHECKIN.value,
        'trigger_value': 14,
        'steps': [
            _email(
                'We miss you at {{gym_name}}!',
                "Hi {{first_name}},\n\nWe noticed you haven't visited us in a while. We miss seeing you at the gym!\n\n"
                "Come back and get back on track with your fitness goals. Your workout routine is waiting for you.\n\n"
                "See you soon!\n{{gym_name}} Team",
            ),
            _wait(3),
            _sms("Hey {{first_name}}! We miss you at {{gym_name}}. Come back this week and let's crush those goals together!"),
        ],
    },
    {
        'name': 'New Member Welcome',
        'description': 'Welcome new members and help them get started',
        'trigger_type': TriggerType.NEW_SIGNUP.value,
        'trigger_value': None,
        'steps': [
            _email(
                'Welcome to {{gym_name}}!',
                "Hi {{first_name}},\n\nWelcome to the {{gym_name}} family! We're thrilled to have you with us.\n\n"
                "Here are a few tips to get started:\n- Download our app to book classes\n- Check out our class schedule\n"
                "- Don't hesitate to ask our staff for help\n\nWe can't wait to see you at the gym!\n\nBest,\n{{gym_name}} Team",
            ),
            _wait(2),
            _email(
                "How's your first week going?",
                "Hi {{first_name}},\n\nHow's your first week at {{gym_name}} going?\n\n"
                "If you have any questions or need help with equipment, our staff is always happy to assist.\n\n"
                "Have you tried any of our group classes yet? They're a great way to meet other members and stay motivated!\n\n"
                "Keep up the great work!\n{{gym_name}} Team",
            ),
        ],
    },
    {
        'name': 'Membership Renewal Reminder',
        'description': 'Remind members before their membership expires',
        'trigger_type': TriggerType.MEMBERSHIP_EXPIRING.value,
        'trigger_value': 14,
        'steps': [
            _email(
                'Your membership is expiring soon',
                "Hi {{first_name}},\n\nJust a friendly reminder that your {{gym_name}} membership will expire in 14 days.\n\n"
                "Don't let your fitness journey stop! Renew now to keep access to all our facilities and classes.\n\n"
                "Renew your membership today and continue working toward your goals.\n\nBest,\n{{gym_name}} Team",
            ),
            _wait(7),
            _email(
                'Only 7 days left on your membership',
                "Hi {{first_name}},\n\nYour membership expires in just 7 days!\n\n"
                "Renew now to avoid any interruption to your workouts. We'd hate to see you go.\n\n"
                "Need help renewing? Just reply to this email or visit our front desk.\n\n{{gym_name}} Team",
            ),
            _wait(5),
            _sms('Hi {{first_name}}, your {{gym_name}} membership expires in 2 days! Renew today to keep your access.'),
        ],
    },
    {
        'name': 'Birthday Reward',
        'description': 'Send birthday wishes with a special offer',
        'trigger_type': TriggerType.BIRTHDAY.value,
        'trigger_value': None,
        'steps': [
            _email(
                'Happy Birthday, {{first_name}}!',
                "Happy Birthday, {{first_name}}!\n\nThe whole team at {{gym_name}} wishes you an amazing birthday!\n\n"
                "As our gift to you, enjoy a FREE guest pass to bring a friend to your next workout. "
                "Just show this email at the front desk.\n\n"
                "Here's to another year of crushing your fitness goals!\n\nHave a wonderful day!\n{{gym_name}} Team",
            ),
            _sms('Happy Birthday {{first_name}}! Enjoy a FREE guest pass this week courtesy of {{gym_name}}. '
                 'Show this text at the front desk!'),
        ],
    },
]


def seed_default_templates(db_session, gym_id) -> List[AutomatedFlow]:
    """Create the starter flows for a gym. Returns [] if the gym already has templates."""
    existing = db_session.query(AutomatedFlow).filter_by(gym_id=gym_id, is_template=True).count()
    if existing:
        logger.info(f"Gym {gym_id} already has {existing} flow templates")
        return []

    created = []
    for template in DEFAULT_TEMPLATES:
        validate_steps([StepSnapshot(order=i, **step) for i, step in enumerate(template['steps'])])
        flow = AutomatedFlow(
            gym_id=gym_id,
            name=template['name'],
            description=template['description'],
            trigger_type=template['trigger_type'],
            trigger_value=template['trigger_value'],
            is_template=True,
            is_active=False,
        )
        flow.steps = [FlowStep(order=i, **step) for i, step in enumerate(template['steps'])]
        db_session.add(flow)
        created.append(flow)

    db_session.commit()
    logger.info(f"Seeded {len(created)} flow templates for gym {gym_id}")
    return created
