from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, Text, DateTime, Numeric, JSON,
    UniqueConstraint, func,
)
from sqlalchemy.orm import relationship

from .database import Base


# ---------------------------
# STUDY
# ---------------------------
class Study(Base):
    __tablename__ = "study"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    author = Column(String, nullable=True)
    cover_image = Column(String, nullable=True)
    is_published = Column(Boolean, default=False, nullable=False)
    is_premium = Column(Boolean, default=False, nullable=False)
    price = Column(Numeric(10, 2), default=0, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    weeks = relationship(
        "Week",
        back_populates="study",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Week.week_number",
    )

    def __repr__(self):
        return f"<Study {self.id} {self.title!r}>"


# ---------------------------
# WEEK
# ---------------------------
class Week(Base):
    __tablename__ = "week"
    __table_args__ = (UniqueConstraint("study_id", "week_number", name="uq_week_study_number"),)

    id = Column(Integer, primary_key=True, index=True)
    study_id = Column(Integer, ForeignKey("study.id", ondelete="CASCADE"), nullable=False, index=True)
    week_number = Column(Integer, nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    study = relationship("Study", back_populates="weeks")
    days = relationship(
        "Day",
        back_populates="week",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Day.day_number",
    )


# ---------------------------
# DAY
# ---------------------------
class Day(Base):
    __tablename__ = "day"
    __table_args__ = (UniqueConstraint("week_id", "day_number", name="uq_day_week_number"),)

    id = Column(Integer, primary_key=True, index=True)
    week_id = Column(Integer, ForeignKey("week.id", ondelete="CASCADE"), nullable=False, index=True)
    day_number = Column(Integer, nullable=False)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=True)
    scripture = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    week = relationship("Week", back_populates="days")
    questions = relationship(
        "Question",
        back_populates="day",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Question.order",
    )


# ---------------------------
# QUESTION
# ---------------------------
class Question(Base):
    __tablename__ = "question"

    id = Column(Integer, primary_key=True, index=True)
    day_id = Column(Integer, ForeignKey("day.id", ondelete="CASCADE"), nullable=False, index=True)
    question_text = Column(Text, nullable=False)
    question_type = Column(String(32), nullable=False, default="text", server_default="text")
    order = Column("order", Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    day = relationship("Day", back_populates="questions")
    answers = relationship(
        "Answer",
        back_populates="question",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


# ---------------------------
# ANSWER (written by the study reader, only cascaded here)
# ---------------------------
class Answer(Base):
    __tablename__ = "answer"
    __table_args__ = (UniqueConstraint("question_id", "user_id", name="uq_answer_question_user"),)

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(Integer, ForeignKey("question.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    answer_text = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    question = relationship("Question", back_populates="answers")


# ---------------------------
# AUDIT LOG (append only)
# ---------------------------
class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=True, index=True)
    action = Column(String(32), nullable=False)
    entity_type = Column(String(32), nullable=True)
    entity_id = Column(String, nullable=True)
    details = Column(JSON, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
