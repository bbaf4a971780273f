"""
Utility modules for relation_pipeline
"""
from .datetime_utils import parse_date_bound, utc_now

__all__ = ['parse_date_bound', 'utc_now']
