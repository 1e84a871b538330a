from sqlalchemy import Column, String, Boolean, Integer
from sqlalchemy.orm import relationship
from .base import BaseModel


class User(BaseModel):
    __tablename__ = 'users'

    # Opaque handle shown to other participants; emails live with the identity provider
    display_id = Column(String(64), unique=True, nullable=False, index=True)

    # Status
    is_banned = Column(Boolean, default=False, nullable=False)

    # Reviewer standing, only changed by the assignment and verification engine
    integrity_score = Column(Integer, default=0, nullable=False)
    qualified_evaluator = Column(Boolean, default=False, nullable=False)

    # Relationships
    submissions = relationship("Submission", back_populates="author", lazy='dynamic')
    assignments = relationship("Assignment", back_populates="reviewer", lazy='dynamic',
                               foreign_keys='Assignment.reviewer_id')
