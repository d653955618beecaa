"""Ethical event model."""
from sqlalchemy import Column, Integer, Boolean, Text, DateTime, ForeignKey, Uuid, Enum as SQLEnum
from sqlalchemy.orm import relationship
import uuid
import enum

from splitlab.database import Base
from splitlab.models.split_test import ContentVersion
from splitlab.models.types import utcnow


class EthicalCondition(str, enum.Enum):
    LEARNER_OFFENDED = "learner_offended"
    PATTERN_OF_DISSATISFACTION = "pattern_of_dissatisfaction"


class Severity(str, enum.Enum):
    WARNING = "warning"
    STOP = "stop"


class EthicalEvent(Base):
    """A safety signal raised while a split test was running."""

    __tablename__ = "split_test_ethical_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    split_test_id = Column(Uuid, ForeignKey("split_tests.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    triggered_at = Column(DateTime, default=utcnow, nullable=False)
    condition_type = Column(SQLEnum(EthicalCondition), nullable=False)
    offending_version = Column(SQLEnum(ContentVersion), nullable=False)
    feedback_summary = Column(Text, nullable=False)  # anonymized
    consecutive_negative_count = Column(Integer)
    severity = Column(SQLEnum(Severity), nullable=False)
    test_stopped = Column(Boolean, nullable=False, default=False)

    # Relationships
    split_test = relationship("SplitTest", back_populates="ethical_events")

    def __repr__(self):
        return f"<EthicalEvent {self.condition_type.value} severity={self.severity.value}>"
