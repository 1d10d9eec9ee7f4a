from .categorizer import GroqCategorizer

__all__ = ['GroqCategorizer']
