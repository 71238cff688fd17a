"""
Configuration module for the follow-up core

- settings: environment-driven constants and logging setup
- redis: connections for the store and the rq queue
"""

from .redis import create_redis_connection, check_redis_connection

__all__ = ['create_redis_connection', 'check_redis_connection']
