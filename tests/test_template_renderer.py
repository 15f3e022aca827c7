from factories import member
from gymflow.services.automation.template_renderer import build_context, render


class TestRender:

    def test_known_tokens_are_replaced(self):
        assert render('Hi {{first_name}} from {{ gym_name }}', {'first_name': 'Alex', 'gym_name': 'Pulse'}) == \
            'Hi Alex from Pulse'

    def test_unknown_tokens_are_left_verbatim(self):
        assert render('Hi {{first_name}}, code {{promo_code}}', {'first_name': 'Alex'}) == \
            'Hi Alex, code {{promo_code}}'

    def test_empty_template(self):
        assert render(None, {'first_name': 'Alex'}) == ''
        assert render('', {}) == ''


class TestBuildContext:

    def test_member_fields(self):
        context = build_context(member(), 'Iron Temple')

        assert context['full_name'] == 'Alex Rivera'
        assert context['gym_name'] == 'Iron Temple'
        assert context['email'] == 'm1@example.com'

    def test_member_gym_name_wins_over_default(self):
        assert build_context(member(gym_name='Pulse'), 'Iron Temple')['gym_name'] == 'Pulse'

    def test_missing_values_are_dropped(self):
        context = build_context(member(last_name=None, phone=None), None)

        assert context['full_name'] == 'Alex'
        assert 'last_name' not in context
        assert 'phone' not in context
        assert 'gym_name' not in context
