import uuid
from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY, UUID
from .database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, server_default=text("gen_random_uuid()"))
    email = Column(String(255), nullable=False, unique=True)
    status = Column(String, nullable=False, default="unverified")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (Index("idx_users_status", "status"),)


class Form(Base):
    __tablename__ = "forms"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, server_default=text("gen_random_uuid()"))
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    gender = Column(String, nullable=False)
    familiar_tags = Column(ARRAY(Text), nullable=False)
    aspirational_tags = Column(ARRAY(Text), nullable=False)
    recent_topics = Column(Text, nullable=False, default="")
    self_traits = Column(ARRAY(Text), nullable=False)
    ideal_traits = Column(ARRAY(Text), nullable=False)
    physical_boundary = Column(SmallInteger, nullable=False)
    self_intro = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("gender IN ('male', 'female')", name="ck_forms_gender"),
        CheckConstraint("physical_boundary BETWEEN 1 AND 4", name="ck_forms_physical_boundary"),
    )


class Veto(Base):
    __tablename__ = "vetoes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, server_default=text("gen_random_uuid()"))
    vetoer_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    vetoed_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("vetoer_id", "vetoed_id", name="uq_veto_pair"),
        CheckConstraint("vetoer_id <> vetoed_id", name="ck_veto_not_self"),
    )


class MatchPreview(Base):
    __tablename__ = "match_previews"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, server_default=text("gen_random_uuid()"))
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    candidate_ids = Column(ARRAY(UUID(as_uuid=True)), nullable=False)
    scores = Column(ARRAY(Float), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class FinalMatch(Base):
    __tablename__ = "final_matches"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, server_default=text("gen_random_uuid()"))
    user_a_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    user_b_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    score = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint("user_a_id < user_b_id", name="ck_final_match_canonical_order"),
        Index("idx_final_matches_user_a", "user_a_id"),
        Index("idx_final_matches_user_b", "user_b_id"),
    )


class ScheduledFinalMatch(Base):
    __tablename__ = "scheduled_final_matches"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, server_default=text("gen_random_uuid()"))
    scheduled_time = Column(DateTime(timezone=True), nullable=False, unique=True)
    status = Column(String, nullable=False, default="pending", server_default="pending")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    executed_at = Column(DateTime(timezone=True), nullable=True)
    matches_created = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'completed', 'failed')", name="ck_scheduled_status"),
        Index("idx_scheduled_final_matches_time", "scheduled_time"),
    )
