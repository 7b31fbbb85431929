from ai_lms import db
from datetime import datetime


class StoredItem(db.Model):
    """One key/value string pair in a browser's storage namespace."""
    __tablename__ = "stored_item"

    id = db.Column(db.Integer, primary_key=True)
    namespace = db.Column(db.String(64), nullable=False, index=True)
    key = db.Column(db.String(100), nullable=False)
    value = db.Column(db.Text, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("namespace", "key", name="uq_stored_item_namespace_key"),
    )
