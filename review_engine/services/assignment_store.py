"""Durable ledger of reviewer obligations.

Every status change here is a conditional UPDATE on the expected prior status.
Zero affected rows means another writer got there first and is reported as a
ConflictError, never silently ignored.
"""
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Sequence

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from review_engine.database import get_db
from review_engine.errors import ConflictError, NotFoundError, ValidationError
from review_engine.models import Assignment, Review, Submission, User
from review_engine.models.assignment import AssignmentMode, AssignmentStatus
from review_engine.services.panel_selector import PanelItem
from review_engine.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ExpiredAssignment:
    id: int
    reviewer_id: int
    submission_id: int
    mode: AssignmentMode


class AssignmentStore:

    def create_panel(self, reviewer_id: int, items: Sequence[PanelItem], mode: AssignmentMode,
                     deadline_days: int, now: datetime = None,
                     verification_request_id: int = None,
                     replaces_assignment_id: int = None) -> List[int]:
        """Insert one reviewer's assignments as a unit; all rows or none"""
        now = now or datetime.utcnow()
        deadline = now + timedelta(days=deadline_days)
        submission_ids = [item.submission_id for item in items]

        if len(set(submission_ids)) != len(submission_ids):
            raise ConflictError('Panel contains the same submission twice', reviewer_id=reviewer_id)

        try:
            with get_db() as db:
                authors = dict(db.query(Submission.id, Submission.user_id).filter(
                    Submission.id.in_(submission_ids)
                ).all())
                missing = set(submission_ids) - set(authors)
                if missing:
                    raise NotFoundError('Submission not found', submission_ids=sorted(missing))
                if reviewer_id in authors.values():
                    raise ValidationError('Reviewer cannot review their own submission', reviewer_id=reviewer_id)

                duplicates = db.query(Assignment.submission_id).filter(
                    Assignment.reviewer_id == reviewer_id,
                    Assignment.submission_id.in_(submission_ids),
                    Assignment.status != AssignmentStatus.EXPIRED
                ).all()
                if duplicates:
                    raise ConflictError(
                        'Active assignment already exists',
                        reviewer_id=reviewer_id,
                        submission_ids=sorted(d[0] for d in duplicates)
                    )

                created = []
                for item in items:
                    assignment = Assignment(
                        submission_id=item.submission_id,
                        reviewer_id=reviewer_id,
                        mode=mode,
                        status=AssignmentStatus.PENDING,
                        assigned_at=now,
                        deadline=deadline,
                        verification_request_id=verification_request_id,
                        replaces_assignment_id=replaces_assignment_id,
                    )
                    db.add(assignment)
                    created.append(assignment)
                db.flush()
                return [a.id for a in created]
        except IntegrityError as e:
            # Lost a race against a concurrent writer; the unique indexes caught it
            raise ConflictError('Active assignment already exists', reviewer_id=reviewer_id) from e

    def complete_with_review(self, db: Session, assignment: Assignment, review_fields: Dict,
                             now: datetime = None) -> Review:
        """PENDING -> DONE together with the Review row, inside the caller's transaction"""
        now = now or datetime.utcnow()

        result = db.execute(
            update(Assignment)
            .where(
                Assignment.id == assignment.id,
                Assignment.status == AssignmentStatus.PENDING,
                Assignment.deadline >= now
            )
            .values(status=AssignmentStatus.DONE, completed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConflictError('Assignment is no longer pending', assignment_id=assignment.id)

        review = Review(assignment_id=assignment.id, kind=assignment.mode, **review_fields)
        db.add(review)
        try:
            db.flush()
        except IntegrityError as e:
            raise ConflictError('Review already submitted', assignment_id=assignment.id) from e

        assignment.status = AssignmentStatus.DONE
        assignment.completed_at = now
        return review

    def expire_lapsed(self, now: datetime = None, penalty: int = 0) -> List[ExpiredAssignment]:
        """Batch PENDING -> EXPIRED for every passed deadline.

        Already-expired rows fail the status guard, so a second run returns nothing.
        """
        now = now or datetime.utcnow()
        with get_db() as db:
            rows = db.execute(
                update(Assignment)
                .where(
                    Assignment.status == AssignmentStatus.PENDING,
                    Assignment.deadline < now
                )
                .values(status=AssignmentStatus.EXPIRED, updated_at=now)
                .returning(Assignment.id, Assignment.reviewer_id, Assignment.submission_id, Assignment.mode)
                .execution_options(synchronize_session=False)
            ).all()

            expired = [ExpiredAssignment(id=r[0], reviewer_id=r[1], submission_id=r[2], mode=r[3]) for r in rows]
            if penalty:
                self.apply_integrity_deltas(db, {
                    reviewer_id: penalty * count
                    for reviewer_id, count in Counter(e.reviewer_id for e in expired).items()
                })

        return sorted(expired, key=lambda e: e.id)

    def expire_outstanding(self, db: Session, assignment_ids: Sequence[int], now: datetime = None) -> List[int]:
        """Force PENDING -> EXPIRED regardless of deadline (phase cutoff)"""
        if not assignment_ids:
            return []
        now = now or datetime.utcnow()
        rows = db.execute(
            update(Assignment)
            .where(
                Assignment.id.in_(assignment_ids),
                Assignment.status == AssignmentStatus.PENDING
            )
            .values(status=AssignmentStatus.EXPIRED, updated_at=now)
            .returning(Assignment.id)
            .execution_options(synchronize_session=False)
        ).all()
        return sorted(r[0] for r in rows)

    def apply_integrity_deltas(self, db: Session, deltas: Dict[int, int]):
        """Add signed deltas to reviewers' integrity scores"""
        for reviewer_id, delta in deltas.items():
            if not delta:
                continue
            db.execute(
                update(User)
                .where(User.id == reviewer_id)
                .values(integrity_score=User.integrity_score + delta)
                .execution_options(synchronize_session=False)
            )

    def has_replacement(self, db: Session, assignment_id: int) -> bool:
        return db.query(Assignment.id).filter(
            Assignment.replaces_assignment_id == assignment_id
        ).first() is not None
