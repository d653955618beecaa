"""Participant model."""
from sqlalchemy import Column, String, Integer, Boolean, Text, DateTime, ForeignKey, Uuid, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship, validates
import uuid
import enum

from splitlab.database import Base
from splitlab.models.split_test import ContentVersion
from splitlab.models.types import utcnow


class Sentiment(str, enum.Enum):
    """Anonymized feedback sentiment."""
    VERY_POSITIVE = "very_positive"
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"
    VERY_NEGATIVE = "very_negative"


NEGATIVE_SENTIMENTS = frozenset({Sentiment.NEGATIVE, Sentiment.VERY_NEGATIVE})


class Participant(Base):
    """A learner enrolment allocated to one version of a split test."""

    __tablename__ = "split_test_participants"
    __table_args__ = (
        UniqueConstraint("split_test_id", "enrolment_id", name="uq_split_test_participant_enrolment"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    split_test_id = Column(Uuid, ForeignKey("split_tests.id", ondelete="CASCADE"), nullable=False, index=True)
    enrolment_id = Column(String(100), nullable=False)
    version = Column(SQLEnum(ContentVersion), nullable=False)
    allocation_seq = Column(Integer, nullable=False)  # 1-based allocation order
    assigned_at = Column(DateTime, default=utcnow, nullable=False)
    started_at = Column(DateTime, default=utcnow, nullable=False)

    # Outcomes
    competency_achieved = Column(Boolean, nullable=False, default=False)
    messages_to_competency = Column(Integer)
    time_to_competency_minutes = Column(Integer)
    satisfaction_score = Column(Integer)  # 1-5
    got_stuck = Column(Boolean, nullable=False, default=False)
    completed_module = Column(Boolean, nullable=False, default=False)
    abandoned = Column(Boolean, nullable=False, default=False)

    # Feedback (anonymized - no learner identifiers in the text)
    feedback_sentiment = Column(SQLEnum(Sentiment))
    feedback_text_anonymized = Column(Text)

    completed_at = Column(DateTime)
    completion_seq = Column(Integer)  # order among the split test's completions

    # Relationships
    split_test = relationship("SplitTest", back_populates="participants")

    @validates("version")
    def validate_version(self, key, value):
        if self.version is not None and self.version != value:
            raise ValueError("A participant's version is assigned once and never changes")
        return value

    def __repr__(self):
        return f"<Participant {self.enrolment_id} version={self.version.value}>"
