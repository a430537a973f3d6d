"""
Default value application for configuration.

Environment variables override YAML only where they are set; everything else
falls back to the pydantic model defaults.
"""

import os
from typing import Any, Dict


def _section(config_data: Dict[str, Any], name: str) -> Dict[str, Any]:
    block = config_data.get(name)
    if not isinstance(block, dict):
        block = {}
    config_data[name] = block
    return block


def _env_bool(name: str):
    raw = os.getenv(name)
    if raw is None:
        return None
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def apply_store_defaults(config_data: Dict[str, Any]) -> None:
    """
    Apply persistence backend defaults.

    Environment variables:
    - CALLSCRIBE_STORE_BACKEND: 'memory' or 'sqlite'
    - CALLSCRIBE_DB_PATH: SQLite database path
    """
    store_cfg = _section(config_data, 'store')
    backend = os.getenv('CALLSCRIBE_STORE_BACKEND', '').strip().lower()
    if backend:
        store_cfg['backend'] = backend
    db_path = os.getenv('CALLSCRIBE_DB_PATH', '').strip()
    if db_path:
        store_cfg['db_path'] = db_path


def apply_feature_defaults(config_data: Dict[str, Any]) -> None:
    """
    Apply feature flag overrides.

    Environment variables:
    - ENABLE_TRANSCRIPTION: 0|1
    - ENABLE_SUMMARIES: 0|1
    """
    features_cfg = _section(config_data, 'features')
    for env_name, key in (('ENABLE_TRANSCRIPTION', 'enable_transcription'), ('ENABLE_SUMMARIES', 'enable_summaries')):
        value = _env_bool(env_name)
        if value is not None:
            features_cfg[key] = value


def apply_reaper_defaults(config_data: Dict[str, Any]) -> None:
    """
    Apply stale-call cleanup overrides.

    Environment variables:
    - STALE_CALL_MINUTES: age after which an unconnected call is force-completed
    - CLEANUP_INTERVAL_MINUTES: how often the sweep runs
    """
    reaper_cfg = _section(config_data, 'reaper')
    stale = _env_int('STALE_CALL_MINUTES')
    if stale is not None:
        reaper_cfg['stale_call_minutes'] = stale
    interval = _env_int('CLEANUP_INTERVAL_MINUTES')
    if interval is not None:
        reaper_cfg['interval_minutes'] = interval


def apply_webhook_defaults(config_data: Dict[str, Any]) -> None:
    """
    Apply webhook authentication overrides.

    Environment variables:
    - WEBHOOK_HEADER_NAME: header carrying the shared secret
    - WEBHOOK_ENFORCE_KEY: 0|1
    """
    webhook_cfg = _section(config_data, 'webhook')
    header_name = os.getenv('WEBHOOK_HEADER_NAME', '').strip()
    if header_name:
        webhook_cfg['header_name'] = header_name
    enforce = _env_bool('WEBHOOK_ENFORCE_KEY')
    if enforce is not None:
        webhook_cfg['enforce_key'] = enforce


def apply_logging_defaults(config_data: Dict[str, Any]) -> None:
    """LOG_LEVEL overrides logging.level."""
    logging_cfg = _section(config_data, 'logging')
    level = os.getenv('LOG_LEVEL', '').strip()
    if level:
        logging_cfg['level'] = level.lower()
