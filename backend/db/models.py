from datetime import datetime
from sqlalchemy import (
    Column, Integer, Text, Boolean, ForeignKey, Index,
    DateTime, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from db.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(Text, unique=True, nullable=False)
    username_normalized = Column(Text, unique=True, nullable=False)
    password_hash = Column(Text, nullable=False)
    display_name = Column(Text, nullable=False)
    token_version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    meta = relationship("AccountMeta", back_populates="user", uselist=False, cascade="all, delete-orphan")
    device = relationship("NotificationDevice", back_populates="user", uselist=False, cascade="all, delete-orphan")
    channels = relationship("DeviceChannel", back_populates="user", cascade="all, delete-orphan")
    pending_notifications = relationship("DeviceNotification", back_populates="user", cascade="all, delete-orphan")


class AccountMeta(Base):
    __tablename__ = "account_meta"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    meta_json = Column(Text, nullable=False, default="{}")  # JSON object; "planner" holds the planner state
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="meta")


class NotificationDevice(Base):
    __tablename__ = "notification_devices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    permission = Column(Text, nullable=False, default="prompt")  # granted | denied | prompt
    platform = Column(Text, default="android")  # android | ios | web
    last_synced_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="device")


class DeviceChannel(Base):
    __tablename__ = "device_channels"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    channel_id = Column(Text, nullable=False)
    name = Column(Text, nullable=False)
    description = Column(Text)
    importance = Column(Integer, default=5)
    visibility = Column(Integer, default=1)
    vibration = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="channels")

    __table_args__ = (UniqueConstraint("user_id", "channel_id", name="uq_device_channel_user_channel"),)


class DeviceNotification(Base):
    __tablename__ = "device_notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    notification_id = Column(Integer, nullable=False)  # hash-derived platform id
    kind = Column(Text)  # extra.kind, "planner" for scheduler-owned rows
    payload = Column(Text, nullable=False)  # JSON descriptor
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="pending_notifications")

    __table_args__ = (
        UniqueConstraint("user_id", "notification_id", name="uq_device_notification_user_id"),
    )


Index("idx_device_notifications_user_kind", DeviceNotification.user_id, DeviceNotification.kind)
