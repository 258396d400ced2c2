"""
Attendance integrity validation engine.

Verifies that a claimed check-in (a person, at a place, at a time, optionally
with a photo) is genuine rather than spoofed, shared, or replayed.
"""

__version__ = "1.0.0"
