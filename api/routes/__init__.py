"""
API Routes Package
"""

from api.routes import accounts, ai, chat, contexts, emails, health, notifications, stats

__all__ = ["accounts", "ai", "chat", "contexts", "emails", "health", "notifications", "stats"]
