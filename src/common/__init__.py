"""
Shared configuration, logging and conversation models.
"""
