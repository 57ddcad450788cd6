"""
HTTP API for driving captioning sessions.
"""
