from sqlalchemy import Column, Integer, Float, Boolean, ForeignKey, DateTime
from .base import BaseModel


class ScoreSnapshot(BaseModel):
    """Aggregated scores for one submission, rewritten on every recompute"""
    __tablename__ = 'score_snapshots'

    submission_id = Column(Integer, ForeignKey('submissions.id'), unique=True, nullable=False)

    overall = Column(Float, nullable=False)
    clarity = Column(Float, nullable=False)
    argument = Column(Float, nullable=False)
    style = Column(Float, nullable=False)
    moral_depth = Column(Float, nullable=False)

    review_count = Column(Integer, nullable=False)
    used_trimmed_mean = Column(Boolean, default=False, nullable=False)
    rank = Column(Integer)
    computed_at = Column(DateTime, nullable=False)

    def to_dict(self):
        return {
            'submission_id': self.submission_id,
            'overall': self.overall,
            'criteria': {
                'clarity': self.clarity,
                'argument': self.argument,
                'style': self.style,
                'moral_depth': self.moral_depth,
            },
            'review_count': self.review_count,
            'used_trimmed_mean': self.used_trimmed_mean,
            'rank': self.rank,
            'computed_at': self.computed_at.isoformat() if self.computed_at else None,
        }
