from .client import DEFAULT_MODEL, EnhancedGroqClient

__all__ = [
    'DEFAULT_MODEL',
    'EnhancedGroqClient'
]
