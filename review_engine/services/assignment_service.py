from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, List, Set

from review_engine.database import get_db
from review_engine.errors import (ConflictError, InvalidStatusError, NotFoundError,
                                  PhaseTransitionError)
from review_engine.models import Assignment, Contest, Submission
from review_engine.models.assignment import AssignmentMode, AssignmentStatus
from review_engine.models.contest import ContestPhase
from review_engine.models.submission import SubmissionStatus
from review_engine.results import AssignmentResult
from review_engine.services.assignment_store import AssignmentStore
from review_engine.services.eligibility_service import (EligibilityResolver, REVIEW_POLICY,
                                                        VERIFICATION_POLICY)
from review_engine.services.notification_service import Notifier
from review_engine.services.panel_selector import PanelItem, PanelSelector
from review_engine.services.settings_provider import ContestSettingsProvider
from review_engine.utils.logger import get_logger
from review_engine.utils.retry import RetryPolicy

logger = get_logger(__name__)


class AssignmentService:
    """Creates reviewer panels for peer verification and the peer review phase"""

    def __init__(self, store: AssignmentStore = None, resolver: EligibilityResolver = None,
                 selector: PanelSelector = None, notifier: Notifier = None,
                 settings: ContestSettingsProvider = None, retry_policy: RetryPolicy = None):
        self.store = store or AssignmentStore()
        self.resolver = resolver or EligibilityResolver()
        self.selector = selector or PanelSelector()
        self.notifier = notifier or Notifier()
        self.settings = settings or ContestSettingsProvider()
        self.retry_policy = retry_policy or RetryPolicy()

    def assign_verification_panel(self, submission_id: int, now: datetime = None) -> AssignmentResult:
        """Pick reviewers for a paid peer verification and give each a blind panel.

        Each reviewer sees the target plus one known-good and one known-bad control,
        shuffled. An undersized pool still assigns everyone available.
        """
        now = now or datetime.utcnow()
        result = AssignmentResult()

        with get_db() as db:
            submission = db.get(Submission, submission_id)
            if not submission:
                raise NotFoundError('Submission not found', submission_id=submission_id)
            if submission.status != SubmissionStatus.PEER_VERIFICATION_PENDING:
                raise InvalidStatusError(
                    'Submission is not awaiting peer verification',
                    submission_id=submission_id, status=submission.status.value
                )

            contest_id = submission.contest_id
            author_id = submission.user_id
            settings = self.settings.get(contest_id)

            already_assigned = self.resolver.active_reviewer_ids(db, submission_id)
            target = settings.reviewers_per_verification - len(self.resolver.panel_reviewer_ids(db, submission_id))
            result.target_reviewers = settings.reviewers_per_verification
            if target <= 0:
                result.warn(f"Submission {submission_id} already has a full verification panel")
                logger.info(f"Skipping verification assignment for submission {submission_id}: panel full")
                return result

            pool = self.resolver.resolve(db, contest_id, author_id, already_assigned, VERIFICATION_POLICY)
            reviewers = self.selector.select_reviewers(pool, target)
            controls = self.selector.select_control_submissions(db, contest_id, {submission_id})
            held = {
                r.id: self.resolver.active_pairs_for_reviewer(db, r.id)
                | self._authored_submission_ids(db, r.id)
                for r in reviewers
            }

        if len(reviewers) < target:
            message = f"Only {len(reviewers)}/{target} reviewers available"
            result.warn(message)
            logger.warning(f"Submission {submission_id}: {message}")
        if not controls.positive:
            result.warn("No positive control submissions available")
        if not controls.negative:
            result.warn("No negative control submissions available")

        for reviewer in reviewers:
            items = self.selector.build_blind_panel(
                submission_id,
                self.selector.draw_controls(controls, reviewer.id, held[reviewer.id])
            )
            self._create_for_reviewer(result, reviewer.id, items, AssignmentMode.VERIFICATION,
                                      settings.deadline_days, now, verification_request_id=submission_id)

        logger.info(
            f"Verification panel for submission {submission_id}: "
            f"{result.reviewers_assigned} reviewers, {result.assignments_created} assignments, "
            f"{result.reviewers_failed} failed"
        )
        return result

    def assign_review_phase(self, contest_id: int, now: datetime = None) -> AssignmentResult:
        """Balanced distribution for the contest-wide peer review phase.

        Every eligible reviewer gets up to reviews_per_reviewer submissions, never their
        own, drawing from the least-reviewed submissions first.
        """
        now = now or datetime.utcnow()
        result = AssignmentResult()

        with get_db() as db:
            contest = db.get(Contest, contest_id)
            if not contest:
                raise NotFoundError('Contest not found', contest_id=contest_id)
            if contest.phase != ContestPhase.PEER_REVIEW:
                raise PhaseTransitionError(
                    'Contest is not in peer review', contest_id=contest_id, phase=contest.phase.value
                )

            settings = self.settings.get(contest_id)
            per_reviewer = settings.reviews_per_reviewer

            reviewers = self.resolver.resolve(db, contest_id, None, (), REVIEW_POLICY)
            submissions = db.query(Submission.id, Submission.user_id).filter(
                Submission.contest_id == contest_id,
                Submission.status.in_(REVIEW_POLICY.eligible_statuses)
            ).order_by(Submission.id).all()

            submission_ids = [s.id for s in submissions]
            authored: Dict[int, Set[int]] = {}
            for s in submissions:
                authored.setdefault(s.user_id, set()).add(s.id)

            load = Counter({sid: 0 for sid in submission_ids})
            if submission_ids:
                load.update(row[0] for row in db.query(Assignment.submission_id).filter(
                    Assignment.submission_id.in_(submission_ids),
                    Assignment.mode == AssignmentMode.REVIEW,
                    Assignment.status != AssignmentStatus.EXPIRED
                ).all())

            held = {
                r.id: self.resolver.active_pairs_for_reviewer(db, r.id, AssignmentMode.REVIEW)
                for r in reviewers
            }
            # Any live pair, including verification work, rules the submission out
            live = {r.id: self.resolver.active_pairs_for_reviewer(db, r.id) for r in reviewers}

        result.target_reviewers = len(reviewers)
        if not reviewers:
            result.warn("No eligible reviewers for the peer review phase")
            logger.warning(f"Contest {contest_id}: no eligible reviewers for peer review")
            return result

        for reviewer in self.selector.shuffle(reviewers):
            wanted = per_reviewer - len(held[reviewer.id])
            if wanted <= 0:
                continue

            excluded = live[reviewer.id] | authored.get(reviewer.id, set())
            candidates = self.selector.shuffle([sid for sid in submission_ids if sid not in excluded])
            # Stable sort keeps the random order among equally loaded submissions
            candidates.sort(key=lambda sid: load[sid])
            chosen = candidates[:wanted]

            if len(chosen) < wanted:
                result.warn(f"Reviewer {reviewer.display_id} received {len(held[reviewer.id]) + len(chosen)}"
                            f"/{per_reviewer} submissions")
            if not chosen:
                continue

            items = [PanelItem(submission_id=sid, is_control=False) for sid in chosen]
            if self._create_for_reviewer(result, reviewer.id, items, AssignmentMode.REVIEW,
                                         settings.deadline_days, now):
                load.update(chosen)

        logger.info(
            f"Peer review assignment for contest {contest_id}: {result.reviewers_assigned} reviewers, "
            f"{result.assignments_created} assignments, {result.reviewers_failed} failed"
        )
        return result

    def _create_for_reviewer(self, result: AssignmentResult, reviewer_id: int, items: List[PanelItem],
                             mode: AssignmentMode, deadline_days: int, now: datetime,
                             verification_request_id: int = None) -> bool:
        """One reviewer's panel under the retry policy; failures are recorded, not raised"""
        try:
            ids = self.retry_policy.call(
                self.store.create_panel, reviewer_id, items, mode, deadline_days, now,
                verification_request_id=verification_request_id,
                label=f'panel for reviewer {reviewer_id}'
            )
        except ConflictError as e:
            result.reviewers_failed += 1
            result.error(f"Reviewer {reviewer_id}: {e.message}")
            logger.warning(f"Conflict creating assignments for reviewer {reviewer_id}: {e.message}")
            return False
        except Exception as e:
            result.reviewers_failed += 1
            result.error(f"Reviewer {reviewer_id}: {str(e)}")
            logger.error(f"Error creating assignments for reviewer {reviewer_id}: {str(e)}")
            return False

        result.reviewers_assigned += 1
        result.assignments_created += len(ids)
        self.notifier.send_assignment_notification(reviewer_id, len(ids), now + timedelta(days=deadline_days))
        return True

    def _authored_submission_ids(self, db, user_id: int) -> Set[int]:
        return {row[0] for row in db.query(Submission.id).filter(Submission.user_id == user_id).all()}
