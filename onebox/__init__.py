"""
Email onebox: multi-account email ingestion and enrichment pipeline.
"""

__version__ = "1.0.0"
