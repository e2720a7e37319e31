"""
Database - MongoDB connection (motor)

Every service imports the shared handle:

    from database import db

Datetimes come back timezone-aware (UTC). Transactions need a replica set
(or a sharded cluster); the sequence allocator opens its sessions
through `db.client`.
"""
import os
from motor.motor_asyncio import AsyncIOMotorClient

MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017/?replicaSet=rs0')
DB_NAME = os.environ.get('DB_NAME', 'business_ops')

client = AsyncIOMotorClient(MONGO_URL, tz_aware=True)
db = client[DB_NAME]
