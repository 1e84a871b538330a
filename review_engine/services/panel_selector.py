import random
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Set, TypeVar

from sqlalchemy.orm import Session

from review_engine.models import Submission
from review_engine.models.submission import SubmissionStatus
from review_engine.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar('T')

# Upper bound on each control pool pulled from the database
CONTROL_POOL_LIMIT = 50


@dataclass(frozen=True)
class PanelItem:
    submission_id: int
    is_control: bool


@dataclass
class ControlPools:
    positive: List[int] = field(default_factory=list)
    negative: List[int] = field(default_factory=list)


class PanelSelector:
    """Random reviewer and control selection.

    Pass a seeded ``random.Random`` for reproducible panels.
    """

    def __init__(self, rng: random.Random = None):
        self.rng = rng or random.SystemRandom()

    def shuffle(self, items: Sequence[T]) -> List[T]:
        """Fisher-Yates shuffle into a new list"""
        result = list(items)
        for i in range(len(result) - 1, 0, -1):
            j = self.rng.randint(0, i)
            result[i], result[j] = result[j], result[i]
        return result

    def sample(self, pool: Sequence[T], count: int) -> List[T]:
        """Sample without replacement; the whole pool when it is not larger than count"""
        if count <= 0:
            return []
        if len(pool) <= count:
            return list(pool)
        return self.shuffle(pool)[:count]

    def select_reviewers(self, pool: Sequence[T], target_count: int) -> List[T]:
        return self.sample(pool, target_count)

    def pick_one(self, pool: Sequence[T]) -> Optional[T]:
        if not pool:
            return None
        return pool[self.rng.randrange(len(pool))]

    def select_control_submissions(self, db: Session, contest_id: int,
                                   exclude_submission_ids: Set[int] = frozenset()) -> ControlPools:
        """Known-good (SUBMITTED) and known-bad (ELIMINATED_ACCEPTED) submissions of the contest.

        Each pool is a random sample of at most CONTROL_POOL_LIMIT, drawn with the
        selector's RNG.
        """
        def pool(status):
            query = db.query(Submission.id).filter(
                Submission.contest_id == contest_id,
                Submission.status == status
            )
            if exclude_submission_ids:
                query = query.filter(Submission.id.notin_(exclude_submission_ids))
            ids = [row[0] for row in query.order_by(Submission.id).all()]
            return self.sample(ids, CONTROL_POOL_LIMIT)

        return ControlPools(
            positive=pool(SubmissionStatus.SUBMITTED),
            negative=pool(SubmissionStatus.ELIMINATED_ACCEPTED),
        )

    def draw_controls(self, pools: ControlPools, reviewer_id: int,
                      held_submission_ids: Set[int] = frozenset()) -> List[PanelItem]:
        """One positive and one negative control for a single reviewer.

        Controls are known answers, so the same submission may show up in many panels.
        Controls the reviewer already holds, or authored, are skipped by the caller
        passing them in held_submission_ids.
        """
        controls = []
        for candidates in (pools.positive, pools.negative):
            available = [sid for sid in candidates if sid not in held_submission_ids]
            chosen = self.pick_one(available)
            if chosen is not None:
                controls.append(PanelItem(submission_id=chosen, is_control=True))
        return controls

    def build_blind_panel(self, target_submission_id: int, controls: Sequence[PanelItem]) -> List[PanelItem]:
        """Target plus controls in random order, so position says nothing"""
        return self.shuffle([PanelItem(submission_id=target_submission_id, is_control=False)] + list(controls))
