"""
Operator tools for the follow-up core
"""
