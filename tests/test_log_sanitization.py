"""
Log sanitization and context processors.

Verifies that secrets never reach a log sink while call identifiers do.
"""

from callscribe.logging_config import (
    SERVICE_NAME,
    add_correlation_id,
    add_service_context,
    correlation_id_var,
    sanitize_secrets,
    set_correlation_id,
)


class TestLogSanitization:
    """Tests for secret sanitization processor."""

    def test_redact_api_key(self):
        """Should redact api_key field, keeping a two character prefix."""
        result = sanitize_secrets(None, None, {'event': 'Summary request', 'api_key': 'sk-1234567890abcdef'})

        assert result['api_key'] == 'sk***REDACTED***'
        assert result['event'] == 'Summary request'

    def test_redact_webhook_key_and_validation_code(self):
        event_dict = {
            'event': 'Webhook received',
            'webhook_key': 'shared-secret-value',
            'validationCode': 'A1B2-C3D4',
        }
        result = sanitize_secrets(None, None, event_dict)

        assert 'REDACTED' in result['webhook_key']
        assert 'REDACTED' in result['validationCode']

    def test_redact_authorization_and_token(self):
        event_dict = {
            'authorization': 'Bearer sk-1234567890abcdef',
            'access_token': 'eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9',
            'token': 'abc',
        }
        result = sanitize_secrets(None, None, event_dict)

        assert result['authorization'].startswith('Be***REDACTED***')
        assert result['access_token'].startswith('ey***REDACTED***')
        assert result['token'] == '***REDACTED***'

    def test_case_and_separator_insensitive_matching(self):
        event_dict = {
            'API_KEY': 'sk-test',
            'Client-Secret': 'secret123',
            'x-webhook-key': 'hook-secret',
        }
        result = sanitize_secrets(None, None, event_dict)

        assert all('REDACTED' in value for value in result.values())

    def test_nested_structures(self):
        event_dict = {
            'config': {
                'openai': {'api_key': 'sk-nested', 'model': 'gpt-4o-mini'},
                'headers': [{'Authorization': 'Bearer abcdef'}],
            },
        }
        result = sanitize_secrets(None, None, event_dict)

        assert 'REDACTED' in result['config']['openai']['api_key']
        assert result['config']['openai']['model'] == 'gpt-4o-mini'
        assert 'REDACTED' in result['config']['headers'][0]['Authorization']

    def test_call_identifiers_are_preserved(self):
        event_dict = {
            'session_id': '11111111-1111-1111-1111-111111111111',
            'connection_id': 'cc-1',
            'raw_identifiers': {'group_id': 'g-1', 'server_call_id': 'srv'},
            'key_points': 3,
            'token_expires_at': '2030-01-01T00:00:00+00:00',
        }
        result = sanitize_secrets(None, None, dict(event_dict))

        assert result == event_dict

    def test_empty_and_none_values_preserved(self):
        result = sanitize_secrets(None, None, {'api_key': '', 'password': None})

        assert result['api_key'] == ''
        assert result['password'] is None


class TestContextProcessors:
    def test_correlation_id_added_when_set(self):
        token = correlation_id_var.set(None)
        try:
            assert 'correlation_id' not in add_correlation_id(None, None, {})
            value = set_correlation_id('req-1')
            assert value == 'req-1'
            assert add_correlation_id(None, None, {})['correlation_id'] == 'req-1'
            assert set_correlation_id() != 'req-1'
        finally:
            correlation_id_var.reset(token)

    def test_service_context(self):
        result = add_service_context(None, None, {'logger': 'callscribe.core.dispatcher'})

        assert result['service'] == SERVICE_NAME
        assert result['component'] == 'callscribe.core.dispatcher'
