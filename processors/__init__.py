"""Processors package for the image relay.

Keep arrival-processing logic (classify, validate, upload, relocate) here so
the watcher remains small and testable.
"""

__all__ = ["arrival", "classifier", "descriptor", "errors", "events", "file_processor", "uploader"]
