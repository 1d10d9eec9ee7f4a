from .circuit_breaker import CircuitBreaker
from .service import NotificationService

__all__ = ['CircuitBreaker', 'NotificationService']
