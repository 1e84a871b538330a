#!/usr/bin/env python3
"""
Cron script for running the deadline sweep, reminders and notification dispatch
Run this via cron every 15 minutes: */15 * * * * /path/to/venv/bin/python /path/to/run_sweep_cron.py
"""

import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import datetime
from config.config import config
from review_engine.database import init_db
from review_engine.engine import ReviewEngine
from review_engine.utils.logger import get_logger

logger = get_logger('sweep_cron')


def main():
    """Main cron job function"""
    logger.info(f"Starting sweep cron job at {datetime.utcnow()}")

    try:
        init_db()
        engine = ReviewEngine(config[os.environ.get('FLASK_ENV', 'default')])

        sweep = engine.sweeper.run_sweep()
        warnings = engine.sweeper.send_deadline_warnings()
        reminders = engine.sweeper.send_final_reminders()
        dispatch = engine.dispatcher.dispatch_pending()

        for message in sweep.errors + warnings.errors + reminders.errors + dispatch.errors:
            logger.error(message)
        for message in sweep.warnings:
            logger.warning(message)

        logger.info(
            f"Sweep cron job completed: {sweep.expired} expired, "
            f"{warnings.reviewers_notified + reminders.reviewers_notified} reminders, "
            f"{dispatch.sent} emails sent"
        )

    except Exception as e:
        logger.error(f"Error in sweep cron job: {str(e)}")
        raise


if __name__ == "__main__":
    main()
