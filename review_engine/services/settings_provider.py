import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from config.config import Config
from review_engine.database import get_db
from review_engine.errors import NotFoundError, ValidationError
from review_engine.models import Contest
from review_engine.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ContestSettings:
    deadline_days: int
    finalist_count: int
    results_visible: bool
    reviewers_per_verification: int
    reviews_per_reviewer: int
    trim_threshold: int

    @classmethod
    def defaults(cls) -> 'ContestSettings':
        return cls(
            deadline_days=Config.DEFAULT_DEADLINE_DAYS,
            finalist_count=Config.FINALIST_COUNT,
            results_visible=Config.RESULTS_VISIBLE,
            reviewers_per_verification=Config.REVIEWERS_PER_VERIFICATION,
            reviews_per_reviewer=Config.REVIEWS_PER_REVIEWER,
            trim_threshold=Config.TRIM_THRESHOLD,
        )

    def merged(self, voting_rules: Optional[Dict]) -> 'ContestSettings':
        """Overlay a contest's voting_rules on these values, ignoring unknown keys"""
        overrides = {}
        for key, value in (voting_rules or {}).items():
            if key in RULE_TYPES and value is not None:
                overrides[key] = RULE_TYPES[key](value)
        return replace(self, **overrides)

    def to_dict(self) -> Dict:
        return {key: getattr(self, key) for key in RULE_TYPES}


RULE_TYPES = {
    'deadline_days': int,
    'finalist_count': int,
    'results_visible': bool,
    'reviewers_per_verification': int,
    'reviews_per_reviewer': int,
    'trim_threshold': int,
}


def validate_voting_rules(rules: Dict) -> Dict:
    """Check a voting_rules update from the admin API; returns the cleaned dict"""
    if not isinstance(rules, dict):
        raise ValidationError('voting_rules must be an object')

    cleaned = {}
    for key, value in rules.items():
        if key not in RULE_TYPES:
            raise ValidationError(f'Unknown voting rule: {key}')
        expected = RULE_TYPES[key]
        if expected is bool:
            if not isinstance(value, bool):
                raise ValidationError(f'{key} must be a boolean')
        elif isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValidationError(f'{key} must be a positive integer')
        cleaned[key] = value
    return cleaned


class ContestSettingsProvider:
    """Per-contest settings with a short cache-aside TTL.

    Owned by the composition root. A database error while loading falls back to
    the configured defaults so assignment keeps working through a blip.
    """

    def __init__(self, ttl_seconds: float = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else Config.SETTINGS_CACHE_TTL_SECONDS
        self.clock = clock
        self._cache = {}
        self._lock = threading.Lock()

    def get(self, contest_id: int) -> ContestSettings:
        with self._lock:
            cached = self._cache.get(contest_id)
            if cached and self.clock() - cached[1] < self.ttl_seconds:
                return cached[0]
        return self.refresh(contest_id)

    def refresh(self, contest_id: int) -> ContestSettings:
        """Reload from the database, bypassing the cache"""
        try:
            with get_db() as db:
                contest = db.get(Contest, contest_id)
                if not contest:
                    raise NotFoundError('Contest not found', contest_id=contest_id)
                voting_rules = dict(contest.voting_rules or {})
        except SQLAlchemyError as e:
            logger.error(f"Error loading settings for contest {contest_id}, using defaults: {str(e)}")
            return ContestSettings.defaults()

        settings = ContestSettings.defaults().merged(voting_rules)
        with self._lock:
            self._cache[contest_id] = (settings, self.clock())
        return settings

    def invalidate(self, contest_id: int = None):
        with self._lock:
            if contest_id is None:
                self._cache.clear()
            else:
                self._cache.pop(contest_id, None)

    def update_voting_rules(self, contest_id: int, rules: Dict) -> ContestSettings:
        cleaned = validate_voting_rules(rules)
        with get_db() as db:
            contest = db.get(Contest, contest_id)
            if not contest:
                raise NotFoundError('Contest not found', contest_id=contest_id)
            merged = dict(contest.voting_rules or {})
            merged.update(cleaned)
            contest.voting_rules = merged

        logger.info(f"Updated voting rules for contest {contest_id}: {cleaned}")
        self.invalidate(contest_id)
        return self.get(contest_id)
