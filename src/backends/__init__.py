"""
Conversational backends.

Every backend implements the one-method ChatBackend contract; the pipeline
knows nothing about the engine behind it.
"""
