"""
Database package for modgate.

- **db_connection.py**: Single long-lived aiosqlite connection with serialised writes
- **db_schema.py**: Table and trigger creation
"""
