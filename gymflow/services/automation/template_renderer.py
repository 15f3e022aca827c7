"""
Flow Message Template Renderer
Replaces {{token}} merge tags in step subjects and bodies.
"""
import re
from typing import Dict, Optional

TOKEN_PATTERN = re.compile(r'\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}')


def render(template: Optional[str], context: Dict) -> str:
    """Substitute known tokens; tokens missing from the context are left verbatim."""
    if not template:
        return template or ''

    def _replace(match):
        value = context.get(match.group(1))
        if value is None:
            return match.group(0)
        return str(value)

    return TOKEN_PATTERN.sub(_replace, template)


def build_context(member, gym_name: Optional[str] = None) -> Dict:
    """Merge-tag values for a member snapshot."""
    first_name = member.first_name or ''
    last_name = member.last_name or ''
    context = {
        'first_name': first_name or None,
        'last_name': last_name or None,
        'full_name': f"{first_name} {last_name}".strip() or None,
        'email': member.email,
        'phone': member.phone,
        'gym_name': member.gym_name or gym_name,
    }
    return {key: value for key, value in context.items() if value is not None}
