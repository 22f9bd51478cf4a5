"""
Services package - business rules and storage-facing operations.

Services take explicit sessions/engines, return entities and raise the
error taxonomy in errors.py. They never build HTTP responses.
"""
