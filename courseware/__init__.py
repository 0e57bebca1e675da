"""
Courseware backend core.

Provides MongoDB connection lifecycle management, course and user schemas,
and the persistence managers built on top of them.
"""

__version__ = "0.1.0"
