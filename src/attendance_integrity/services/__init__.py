"""
Integrity validation services.
"""
