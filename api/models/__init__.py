from .requests import AddAccountRequest, AddContextRequest, ChatRequest, UpdateContextRequest
from .responses import success_response

__all__ = ['AddAccountRequest', 'AddContextRequest', 'ChatRequest', 'UpdateContextRequest', 'success_response']
