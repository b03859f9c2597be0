"""
Operator tools for RipDB.

- cli: inspect, read, write, purge and re-backup individual keys
"""
