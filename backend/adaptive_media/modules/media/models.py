"""Database models for media assets and access records."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Enum as SQLEnum,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID

from adaptive_media.core.database import Base


class MediaKind(str, Enum):
    """Kind of a stored media item."""
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    ANIMATED_IMAGE = "animated_image"


class ProcessingStatus(str, Enum):
    """Processing status of a media asset."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class MediaAsset(Base):
    """An uploaded media item and its rendition manifest.

    ``manifest`` maps a rendition label to the serialized rendition result
    produced by the last transcode job.
    """
    __tablename__ = "media_assets"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    kind = Column(SQLEnum(MediaKind, name="mediakind", values_callable=_enum_values), nullable=False)

    # Storage paths (authoritative, never derived)
    original_path = Column(String(1024), nullable=False, index=True)
    processed_path = Column(String(1024), nullable=True)
    thumbnail_path = Column(String(1024), nullable=True)

    # Source properties
    file_size = Column(BigInteger, nullable=True)  # bytes
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    duration = Column(Float, nullable=True)  # seconds

    # Processing
    manifest = Column(JSONB, nullable=False, default=dict)
    processing_status = Column(
        SQLEnum(ProcessingStatus, name="processingstatus", values_callable=_enum_values),
        nullable=False,
        default=ProcessingStatus.PENDING,
    )
    processing_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    processed_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<MediaAsset {self.id} - {self.kind.value} - {self.processing_status.value}>"


class UserRole(Base):
    """Role assignment for a principal. Owned by the auth service; read-only here."""
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    role = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class MediaAccessGrant(Base):
    """Grant allowing one principal to view one media item."""
    __tablename__ = "media_access_grants"
    __table_args__ = (UniqueConstraint("user_id", "media_id", name="uq_media_access_user_media"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    media_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    granted_at = Column(DateTime, default=datetime.utcnow)
