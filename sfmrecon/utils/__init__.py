"""
Persistence helpers
"""
