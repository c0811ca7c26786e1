"""
Database package for Warden.

Provides the shared SQLite connection and schema management.
"""
