"""
Default configuration values for smart-bookmarks.

Centralized defaults that can be overridden by environment variables or config files.
"""

from typing import Any, Dict

# Global default settings
DEFAULT_SETTINGS = {
    # Backend REST API
    "backend": {
        "url": "http://localhost:54321",
        "api_key": None,
        "access_token": None,
        "timeout": 10.0,
        "table": "bookmarks"
    },

    # Push channel reconnect policy
    "retry": {
        "max_attempts": 5,
        "initial_delay": 1.0,
        "max_delay": 30.0,
        "backoff_factor": 2.0,
        "jitter": True
    },

    # Push channel
    "channel_name": "bookmark-updates",
    "schema_name": "public",

    # Engine tuning
    "max_queue_size": 1000,
    "tombstone_ttl_seconds": 0.0,
    "settle_timeout": 10.0
}

# Environment variable mappings
ENV_VAR_MAPPING = {
    'SMART_BOOKMARKS_URL': 'backend.url',
    'SMART_BOOKMARKS_API_KEY': 'backend.api_key',
    'SMART_BOOKMARKS_ACCESS_TOKEN': 'backend.access_token',
    'SMART_BOOKMARKS_TIMEOUT': 'backend.timeout',
    'SMART_BOOKMARKS_TABLE': 'backend.table',
    'SMART_BOOKMARKS_CHANNEL': 'channel_name',
    'SMART_BOOKMARKS_MAX_RETRY_ATTEMPTS': 'retry.max_attempts',
    'SMART_BOOKMARKS_RETRY_MAX_DELAY': 'retry.max_delay',
    'SMART_BOOKMARKS_MAX_QUEUE_SIZE': 'max_queue_size',
    'SMART_BOOKMARKS_TOMBSTONE_TTL': 'tombstone_ttl_seconds'
}

# Values kept as strings even when they look numeric or boolean
STRING_CONFIG_PATHS = frozenset({
    'backend.url',
    'backend.api_key',
    'backend.access_token',
    'backend.table',
    'channel_name'
})


def get_default_config() -> Dict[str, Any]:
    """Get a fresh copy of the default configuration"""
    return {
        key: dict(value) if isinstance(value, dict) else value
        for key, value in DEFAULT_SETTINGS.items()
    }
