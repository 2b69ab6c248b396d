"""CSV intake pipeline.

This package stages, parses, groups, validates, and dispatches
laboratory CSV files, and quarantines whatever fails.
"""
