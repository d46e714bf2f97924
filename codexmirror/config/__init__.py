"""Configuration module for codexmirror.

Provides settings for caching, rendering and document resolution.
"""

from .settings import (
    CacheBackendType,
    MirrorSettings,
    DEFAULT_CODEX_ROOT_URL,
    DEFAULT_LLMS_URL,
    get_settings,
    configure,
    reset_settings
)

__all__ = [
    'CacheBackendType',
    'MirrorSettings',
    'DEFAULT_CODEX_ROOT_URL',
    'DEFAULT_LLMS_URL',
    'get_settings',
    'configure',
    'reset_settings'
]
