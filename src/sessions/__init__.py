"""
Session registry and file persistence used by pipeline callers.
"""
