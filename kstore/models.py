"""
Database Models
SQLAlchemy ORM models backing the kiosk's durable local state
"""

from datetime import datetime
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


class StorageEntry(db.Model):
    """Key/value persistence used for the optimistic store snapshot"""
    __tablename__ = 'storage_entries'

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), unique=True, nullable=False, index=True)
    value = db.Column(db.Text)  # JSON serialized value

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<StorageEntry {self.key}>'


class SyncQueue(db.Model):
    """Queue for offline operations to replay against the server when online"""
    __tablename__ = 'sync_queue'

    # Autoincrement id preserves insertion order when timestamps collide
    id = db.Column(db.Integer, primary_key=True)
    op_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)  # product, invoice
    action = db.Column(db.String(32), nullable=False)  # create, update, delete
    target_id = db.Column(db.String(128), nullable=False, index=True)
    payload_json = db.Column(db.Text)  # JSON serialized payload

    timestamp = db.Column(db.BigInteger, nullable=False, index=True)  # ms since epoch
    status = db.Column(db.String(32), default='pending', index=True)  # pending, synced
    attempts = db.Column(db.Integer, default=0)
    last_error = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    synced_at = db.Column(db.DateTime)

    def __repr__(self):
        return f'<SyncQueue {self.entity_type} - {self.action} {self.target_id}>'
