"""
Persistence package for the Directory Service.

The PostgreSQL repository is the system of record for index items; the
cache layer only ever reads through it.
"""
