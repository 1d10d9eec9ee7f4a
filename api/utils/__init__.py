"""
API Utilities
"""
