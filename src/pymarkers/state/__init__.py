"""State/store layer.

This package is the single source of truth for markers and their vote
history, and holds the deterministic policy that decides what each vote
does to them.
"""
