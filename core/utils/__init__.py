"""
Shared utilities for the follow-up core
"""
