"""Top-level package for the PIR intelligence triage pipeline.

This package contains the application entrypoint and all supporting modules
for fetching feeds and uploads, deduplicating and classifying content against
Priority Intelligence Requirements, and routing relevant items to analysts.
"""

__all__ = []
