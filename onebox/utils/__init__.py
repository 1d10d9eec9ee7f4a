from .logging_setup import SafeFormatter, configure_logging
from .metrics import PerformanceLogger

__all__ = ['SafeFormatter', 'configure_logging', 'PerformanceLogger']
