"""
Offline sync with the remote trip store.

- errors.py: failure categorization
- services/: offline queue, remote store client, sync engine, scheduler
- api/: manual sync and queue routes
"""
