from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional


@dataclass
class OperationResult:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def error(self, message: str):
        self.errors.append(message)

    def warn(self, message: str):
        self.warnings.append(message)

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['success'] = self.success
        return data


@dataclass
class AssignmentResult(OperationResult):
    assignments_created: int = 0
    reviewers_assigned: int = 0
    reviewers_failed: int = 0
    target_reviewers: int = 0


@dataclass
class ReassignmentResult(OperationResult):
    reassigned: int = 0
    skipped: int = 0
    new_assignment_ids: List[int] = field(default_factory=list)


@dataclass
class SweepResult(OperationResult):
    expired: int = 0
    expired_assignment_ids: List[int] = field(default_factory=list)
    reassignment: Optional[ReassignmentResult] = None
    verifications_resolved: int = 0
    verifications_refunded: int = 0


@dataclass
class WarningResult(OperationResult):
    reviewers_notified: int = 0
    assignments_covered: int = 0


@dataclass
class PhaseEndResult(OperationResult):
    contest_id: Optional[int] = None
    snapshots_finalized: int = 0
    reviewers_disqualified: List[int] = field(default_factory=list)
    submissions_disqualified: int = 0
    assignments_expired_at_cutoff: int = 0
    finalist_ids: List[int] = field(default_factory=list)


@dataclass
class VerificationOutcome(OperationResult):
    submission_id: Optional[int] = None
    outcome: Optional[str] = None
    reinstate_votes: int = 0
    eliminate_votes: int = 0
    total_votes: int = 0
    reinstate_percentage: float = 0.0
    eliminate_percentage: float = 0.0


@dataclass
class DispatchResult(OperationResult):
    sent: int = 0
    failed: int = 0
    requeued: int = 0
