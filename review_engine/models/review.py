from sqlalchemy import Column, String, Integer, ForeignKey, Enum
from sqlalchemy.orm import relationship
import enum
from .base import BaseModel
from .assignment import AssignmentMode


class ReviewDecision(enum.Enum):
    ELIMINATE = "ELIMINATE"
    REINSTATE = "REINSTATE"


CRITERIA = ('clarity', 'argument', 'style', 'moral_depth')


class Review(BaseModel):
    __tablename__ = 'reviews'

    assignment_id = Column(Integer, ForeignKey('assignments.id'), unique=True, nullable=False)

    # REVIEW carries the four criterion scores, VERIFICATION carries a decision
    kind = Column(Enum(AssignmentMode), nullable=False)

    clarity = Column(Integer)
    argument = Column(Integer)
    style = Column(Integer)
    moral_depth = Column(Integer)
    decision = Column(Enum(ReviewDecision))

    comment = Column(String(100), nullable=False)

    # Relationships
    assignment = relationship("Assignment", back_populates="review")
