#!/usr/bin/env python3
"""
Script to seed the database with a sample contest for local testing
"""

import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import datetime
from review_engine.database import init_db, drop_db, get_db
from review_engine.models import Contest, Payment, Submission, User
from review_engine.models.contest import ContestPhase
from review_engine.models.payment import PaymentPurpose, PaymentStatus
from review_engine.models.submission import SubmissionStatus
from review_engine.utils.security import generate_token
import random

TITLES = [
    'The Ethics of Small Lies', 'Obligations to Future Strangers', 'Mercy and Desert',
    'What We Owe Animals', 'Honesty in an Age of Noise', 'The Duty to Rescue',
    'Loyalty Without Blindness', 'Forgiveness as a Practice', 'Fairness at the Margin',
    'Courage in Ordinary Life', 'The Weight of Promises', 'Gratitude and Debt',
]


def create_contest(db):
    """Create one contest sitting in AI filtering, ready for peer review"""
    contest = Contest(
        name='Moral Philosophy Essay Contest',
        phase=ContestPhase.AI_FILTERING,
        voting_rules={'finalist_count': 5, 'reviews_per_reviewer': 5}
    )
    db.add(contest)
    db.flush()
    print(f"Created contest {contest.id}")
    return contest


def create_participants(db, contest, count=12):
    """One user and one submission per title; a few eliminated or rejected"""
    users = []
    for index in range(count):
        user = User(display_id=f'writer-{index + 1:03d}')
        db.add(user)
        db.flush()
        users.append(user)

        if index < 2:
            status = SubmissionStatus.ELIMINATED
        elif index < 4:
            status = SubmissionStatus.ELIMINATED_ACCEPTED
        else:
            status = SubmissionStatus.SUBMITTED

        submission = Submission(
            contest_id=contest.id,
            user_id=user.id,
            status=status,
            title=TITLES[index % len(TITLES)],
            body_text='Lorem ipsum ' * random.randint(50, 200),
            submission_code=f'SUB-{index + 1:05d}'
        )
        db.add(submission)
        db.flush()

        db.add(Payment(
            submission_id=submission.id,
            user_id=user.id,
            purpose=PaymentPurpose.ENTRY_FEE,
            status=PaymentStatus.PAID,
            amount_cents=1000,
            paid_at=datetime.utcnow()
        ))

    print(f"Created {len(users)} users with submissions")
    return users


def main():
    """Main seeding function"""
    print("Dropping existing database...")
    drop_db()

    print("Initializing new database...")
    init_db()

    # Use a single session for all operations
    with get_db() as db:
        print("Creating contest...")
        contest = create_contest(db)

        print("Creating participants...")
        users = create_participants(db, contest)

        admin = User(display_id='admin')
        db.add(admin)
        db.flush()
        admin_id = admin.id
        contest_id = contest.id
        user_count = len(users)

    print("\nDatabase seeded successfully!")
    print(f"Created:")
    print(f"- Contest {contest_id} in AI_FILTERING")
    print(f"- {user_count} writers (2 eliminated, 2 rejected controls)")
    print(f"\nAdmin token: {generate_token({'user_id': admin_id, 'role': 'admin'})}")

    print("\nAdvance the contest to PEER_REVIEW through the admin API to create assignments.")


if __name__ == "__main__":
    main()
