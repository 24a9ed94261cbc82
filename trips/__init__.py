"""
Trip records and the local trip store.

- models.py: pydantic models for samples, active and completed trips
- services/: local trip store operations
- api/: trip listing, statistics and edit/delete endpoints
"""
