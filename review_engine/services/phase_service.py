from collections import defaultdict
from datetime import datetime
from typing import Dict

from sqlalchemy import update

from config.config import Config
from review_engine.database import get_db
from review_engine.errors import ConflictError, NotFoundError, PhaseTransitionError, PreconditionError
from review_engine.models import Assignment, Contest, ScoreSnapshot, Submission
from review_engine.models.assignment import AssignmentMode, AssignmentStatus
from review_engine.models.contest import ContestPhase, PHASE_ORDER
from review_engine.models.submission import SubmissionStatus
from review_engine.results import PhaseEndResult
from review_engine.services.assignment_service import AssignmentService
from review_engine.services.assignment_store import AssignmentStore
from review_engine.services.eligibility_service import REVIEW_POLICY
from review_engine.services.notification_service import Notifier
from review_engine.services.scoring_service import ScoringService
from review_engine.services.settings_provider import ContestSettingsProvider
from review_engine.utils.logger import get_logger

logger = get_logger(__name__)


class PhaseService:
    """Contest phase state machine; phases only move forward one step at a time"""

    def __init__(self, assignment_service: AssignmentService = None, scoring: ScoringService = None,
                 store: AssignmentStore = None, notifier: Notifier = None,
                 settings: ContestSettingsProvider = None):
        self.settings = settings or ContestSettingsProvider()
        self.store = store or AssignmentStore()
        self.notifier = notifier or Notifier()
        self.scoring = scoring or ScoringService(settings=self.settings)
        self.assignment_service = assignment_service or AssignmentService(
            store=self.store, notifier=self.notifier, settings=self.settings
        )

    def advance_phase(self, contest_id: int, to_phase: ContestPhase, now: datetime = None) -> Dict:
        now = now or datetime.utcnow()

        with get_db() as db:
            contest = db.get(Contest, contest_id)
            if not contest:
                raise NotFoundError('Contest not found', contest_id=contest_id)
            current = contest.phase

        if PHASE_ORDER.index(to_phase) != PHASE_ORDER.index(current) + 1:
            raise PhaseTransitionError(
                f'Cannot move from {current.value} to {to_phase.value}',
                contest_id=contest_id
            )
        if current == ContestPhase.PEER_REVIEW:
            return self.end_peer_review(contest_id, now).to_dict()

        with get_db() as db:
            self._flip_phase(db, contest_id, current, to_phase)

        logger.info(f"Contest {contest_id} moved from {current.value} to {to_phase.value}")
        response = {'success': True, 'contest_id': contest_id, 'phase': to_phase.value}

        if to_phase == ContestPhase.PEER_REVIEW:
            response['assignment'] = self.assignment_service.assign_review_phase(contest_id, now).to_dict()
        return response

    def end_peer_review(self, contest_id: int, now: datetime = None) -> PhaseEndResult:
        """Finalize scores, penalize missed obligations, pick finalists, open public voting.

        All of it commits together or not at all; notifications go out afterwards.
        """
        now = now or datetime.utcnow()
        result = PhaseEndResult(contest_id=contest_id)

        with get_db() as db:
            contest = db.get(Contest, contest_id)
            if not contest:
                raise NotFoundError('Contest not found', contest_id=contest_id)
            if contest.phase != ContestPhase.PEER_REVIEW:
                raise PhaseTransitionError(
                    'Contest is not in peer review', contest_id=contest_id, phase=contest.phase.value
                )

            contest_submissions = db.query(Submission.id).filter(Submission.contest_id == contest_id)
            review_assignments = db.query(Assignment).filter(
                Assignment.submission_id.in_(contest_submissions),
                Assignment.mode == AssignmentMode.REVIEW
            ).all()
            if not review_assignments:
                raise PreconditionError('No peer review assignments exist for this contest',
                                        contest_id=contest_id)

            settings = self.settings.get(contest_id)

            # (a) final score snapshots
            reviewed = sorted({a.submission_id for a in review_assignments if a.status == AssignmentStatus.DONE})
            for submission_id in reviewed:
                if self.scoring.aggregate(submission_id, db, now, settings.trim_threshold):
                    result.snapshots_finalized += 1

            # (b) reviewers who did not finish
            outstanding = [a.id for a in review_assignments if a.status == AssignmentStatus.PENDING]
            expired_now = self.store.expire_outstanding(db, outstanding, now)
            result.assignments_expired_at_cutoff = len(expired_now)

            assigned = defaultdict(int)
            completed = defaultdict(int)
            for a in review_assignments:
                assigned[a.reviewer_id] += 1
                if a.status == AssignmentStatus.DONE:
                    completed[a.reviewer_id] += 1

            missed_at_cutoff = defaultdict(int)
            for a in review_assignments:
                if a.id in expired_now:
                    missed_at_cutoff[a.reviewer_id] += 1
            self.store.apply_integrity_deltas(db, {
                reviewer_id: count * Config.INTEGRITY_PENALTY_MISSED_AT_PHASE_END
                for reviewer_id, count in missed_at_cutoff.items()
            })

            delinquent = sorted(r for r in assigned if completed[r] < assigned[r])
            disqualified_notices = []
            for reviewer_id in delinquent:
                disqualified = db.execute(
                    update(Submission)
                    .where(
                        Submission.contest_id == contest_id,
                        Submission.user_id == reviewer_id,
                        Submission.status.in_(REVIEW_POLICY.eligible_statuses)
                    )
                    .values(status=SubmissionStatus.DISQUALIFIED, is_finalist=False)
                    .execution_options(synchronize_session=False)
                ).rowcount
                result.submissions_disqualified += disqualified
                if disqualified:
                    result.reviewers_disqualified.append(reviewer_id)
                    disqualified_notices.append((reviewer_id, completed[reviewer_id], assigned[reviewer_id]))
                logger.warning(
                    f"Reviewer {reviewer_id} completed {completed[reviewer_id]} of "
                    f"{assigned[reviewer_id]} reviews; {disqualified} submissions disqualified"
                )

            # (c) finalists among submissions still in the running
            eligible = [row[0] for row in db.query(Submission.id).filter(
                Submission.contest_id == contest_id,
                Submission.status.in_(REVIEW_POLICY.eligible_statuses)
            ).all()]
            ranked = self.scoring.rank_contest(contest_id, db, eligible)
            finalists = ranked[:settings.finalist_count]
            db.execute(
                update(Submission)
                .where(Submission.contest_id == contest_id)
                .values(is_finalist=False)
                .execution_options(synchronize_session=False)
            )
            if finalists:
                db.execute(
                    update(Submission)
                    .where(Submission.id.in_(finalists))
                    .values(is_finalist=True)
                    .execution_options(synchronize_session=False)
                )
            result.finalist_ids = finalists

            # (d) last, so a failure above leaves the phase untouched
            self._flip_phase(db, contest_id, ContestPhase.PEER_REVIEW, ContestPhase.PUBLIC_VOTING)

            scored = db.query(Submission.user_id, Submission.submission_code, ScoreSnapshot.overall,
                              ScoreSnapshot.rank, Submission.id).join(
                ScoreSnapshot, ScoreSnapshot.submission_id == Submission.id
            ).filter(Submission.id.in_(ranked)).order_by(ScoreSnapshot.rank).all() if ranked else []

        logger.info(
            f"Contest {contest_id} peer review ended: {result.snapshots_finalized} scored, "
            f"{len(result.reviewers_disqualified)} reviewers disqualified, {len(finalists)} finalists"
        )

        for reviewer_id, done, required in disqualified_notices:
            self.notifier.send_disqualification(reviewer_id, done, required)
        finalist_set = set(finalists)
        for user_id, code, overall, rank, submission_id in scored:
            if settings.results_visible:
                self.notifier.send_results_available(user_id, code, overall, rank)
            if submission_id in finalist_set:
                self.notifier.send_finalist(user_id, code)

        return result

    def _flip_phase(self, db, contest_id: int, from_phase: ContestPhase, to_phase: ContestPhase):
        flipped = db.execute(
            update(Contest)
            .where(Contest.id == contest_id, Contest.phase == from_phase)
            .values(phase=to_phase)
            .execution_options(synchronize_session=False)
        ).rowcount
        if not flipped:
            raise ConflictError('Contest phase changed concurrently', contest_id=contest_id)
