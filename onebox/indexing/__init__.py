from .email_index import SqlEmailIndex

__all__ = ['SqlEmailIndex']
