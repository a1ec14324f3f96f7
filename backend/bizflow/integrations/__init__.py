"""
External service integrations
"""
