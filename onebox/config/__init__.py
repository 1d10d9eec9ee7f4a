"""
Configuration package initialization.
"""

from .settings import (
    DEFAULT_IMAP_PORT,
    EnvironmentType,
    OneboxSettings,
    get_settings,
    load_account_descriptors,
)

__all__ = [
    'DEFAULT_IMAP_PORT',
    'EnvironmentType',
    'OneboxSettings',
    'get_settings',
    'load_account_descriptors',
]
