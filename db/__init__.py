"""Database package for MongoDB operations using Beanie ODM.

Modules:
    manager: DatabaseManager singleton for connection handling
    models: Beanie Document models for all collections

Usage:
    from db import db_manager
    from db.models import Trip

    await db_manager.init_beanie()
    trips = await Trip.find(Trip.user_id == "u1").to_list()
"""

from db.manager import DatabaseManager, db_manager

__all__ = ["DatabaseManager", "db_manager"]
