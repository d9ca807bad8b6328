import uuid

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from marketplace_billing.db.base import Base


def generate_id() -> str:
    """Document-style identifier; hex only, so it never contains '_'."""
    return uuid.uuid4().hex


class User(Base):
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=generate_id)
    name = Column(String, nullable=True)
    email = Column(String, unique=True, index=True)

    roles = Column(JSON, nullable=False, default=lambda: ["client"])  # "client", "publisher", "superadmin"
    max_posts = Column(Integer, nullable=False, default=0)
    max_bookings = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<User(id={self.id}, roles={self.roles})>"
