"""Storage layer.

This package persists records, notices, job cursors, and the intake
ledger, and talks to the remote result sink.
"""
