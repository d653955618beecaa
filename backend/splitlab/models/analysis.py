"""Analysis model."""
from sqlalchemy import Column, Integer, Float, Boolean, DateTime, ForeignKey, Uuid, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship
import uuid

from splitlab.database import Base
from splitlab.models.split_test import Winner
from splitlab.models.types import JSONType, utcnow


class Analysis(Base):
    """Immutable snapshot of one statistical analysis run."""

    __tablename__ = "split_test_analyses"
    __table_args__ = (
        UniqueConstraint("split_test_id", "sequence", name="uq_split_test_analysis_sequence"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    split_test_id = Column(Uuid, ForeignKey("split_tests.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    analyzed_at = Column(DateTime, default=utcnow, nullable=False)

    # Queryable headline figures; the full result lives in `result`
    winner = Column(SQLEnum(Winner), nullable=False)
    p_value = Column(Float, nullable=False)
    statistical_significance = Column(Boolean, nullable=False)
    result = Column(JSONType, nullable=False)

    # Relationships
    split_test = relationship("SplitTest", back_populates="analyses")

    def __repr__(self):
        return f"<Analysis {self.sequence} winner={self.winner.value} p={self.p_value:.4f}>"
