from .processor import PROCESSING_METRIC, EmailPipeline

__all__ = ['EmailPipeline', 'PROCESSING_METRIC']
