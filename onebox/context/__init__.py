from .store import SqlContextStore, extract_terms

__all__ = ['SqlContextStore', 'extract_terms']
