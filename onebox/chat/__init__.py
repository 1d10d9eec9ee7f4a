from .service import ChatMessage, ChatService, ChatSession

__all__ = ['ChatMessage', 'ChatService', 'ChatSession']
