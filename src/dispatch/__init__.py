"""
Chat-request dispatch and streaming-event pipeline.
"""
