"""
Security-critical configuration injection.

SECURITY POLICY:
- The summarization API key and the webhook shared secret MUST NEVER be in YAML files
- Both come from environment variables only; YAML values are overwritten
"""

import os
from typing import Any, Dict


def _section(config_data: Dict[str, Any], name: str) -> Dict[str, Any]:
    block = config_data.get(name)
    if not isinstance(block, dict):
        block = {}
    config_data[name] = block
    return block


def inject_openai_credentials(config_data: Dict[str, Any]) -> None:
    """
    Inject the summarization provider API key from the environment ONLY.

    Environment variables:
    - OPENAI_API_KEY: API key for the OpenAI-compatible chat endpoint
    - OPENAI_BASE_URL: optional endpoint override (non-secret, YAML wins when set)

    Args:
        config_data: Configuration dictionary to modify in-place
    """
    openai_block = _section(config_data, 'openai')
    openai_block['api_key'] = os.getenv('OPENAI_API_KEY') or None

    base_url = os.getenv('OPENAI_BASE_URL', '').strip()
    if base_url and not openai_block.get('base_url'):
        openai_block['base_url'] = base_url


def inject_webhook_key(config_data: Dict[str, Any]) -> None:
    """
    Inject the webhook shared secret from the environment ONLY.

    Environment variables:
    - CALLSCRIBE_WEBHOOK_KEY: shared secret expected in the webhook header

    Args:
        config_data: Configuration dictionary to modify in-place
    """
    webhook_block = _section(config_data, 'webhook')
    webhook_block['key'] = os.getenv('CALLSCRIBE_WEBHOOK_KEY') or None
