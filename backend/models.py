# models.py — Database model and shared enums for Solis Center
# - One JSON document table standing in for the hosted document database
# - Documents are addressed by (org_id, collection path, doc_id)
# - Subcollections are plain paths: channels/<id>/messages, tasks/<id>/comments

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Integer, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


# ============================================================
# ENUMS
# ============================================================

class MemberRole(str, PyEnum):
    OWNER = "owner"
    ADMIN = "admin"
    MANAGER = "manager"
    MEMBER = "member"
    GUEST = "guest"
    READONLY = "readonly"


class ChannelType(str, PyEnum):
    PUBLIC = "public"
    PRIVATE = "private"
    DM = "dm"


class MessageType(str, PyEnum):
    TEXT = "text"
    SYSTEM = "system"
    FILE = "file"


class TaskStatus(str, PyEnum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    DONE = "done"


class TaskPriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class AIMode(str, PyEnum):
    CHAT = "chat"
    RESEARCH = "research"
    DEEP = "deep"


# ============================================================
# DOCUMENTS
# ============================================================

class StoredDocument(Base):
    __tablename__ = "documents"

    # Insertion sequence, used to break created_at ties
    seq = Column(Integer, primary_key=True, autoincrement=True)
    org_id = Column(String, nullable=False, index=True)
    path = Column(String, nullable=False)
    doc_id = Column(String, nullable=False, default=new_uuid)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("org_id", "path", "doc_id", name="uq_document_address"),
        Index("idx_document_collection", "org_id", "path", "created_at"),
    )
