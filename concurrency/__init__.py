"""
Interdex Concurrency
====================
Advisory file locking shared by the file-backed archivers.
"""
