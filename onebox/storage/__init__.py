from .database import Database, make_engine
from .models import Base, ContextRow, EmailRecord

__all__ = ['Base', 'ContextRow', 'Database', 'EmailRecord', 'make_engine']
