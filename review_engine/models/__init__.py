from .user import User
from .contest import Contest
from .submission import Submission
from .assignment import Assignment
from .review import Review
from .score_snapshot import ScoreSnapshot
from .payment import Payment
from .notification_job import NotificationJob

__all__ = [
    'User', 'Contest', 'Submission', 'Assignment', 'Review',
    'ScoreSnapshot', 'Payment', 'NotificationJob'
]
