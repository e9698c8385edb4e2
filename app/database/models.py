from sqlalchemy.orm import relationship
from sqlalchemy import Column, Integer, String, Text, Boolean, JSON, ForeignKey, DateTime, func

from app.database.connection import Base


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    firebase_uid = Column(String(255), unique=True, index=True, nullable=False)
    email = Column(Text, nullable=True)
    # Push Token Registry: set semantics, only ever appended to by the core
    fcm_tokens = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, server_default=func.now())

    schedules = relationship("Schedule", back_populates="user", cascade="all, delete-orphan")


class Schedule(Base):
    __tablename__ = "schedules"
    id = Column(Integer, primary_key=True, index=True)
    # Indexed owner column doubles as the reminder -> owner lookup for cross-user scans
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    time = Column(String(40), nullable=False)
    recurrence = Column(String(10), nullable=False, default="none")
    notified = Column(Boolean, default=False, nullable=False)
    dismissed = Column(Boolean, default=False, nullable=False, index=True)

    user = relationship("User", back_populates="schedules")
