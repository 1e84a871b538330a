import atexit
from apscheduler.schedulers.background import BackgroundScheduler
from review_engine.utils.logger import get_logger

logger = get_logger(__name__)


def start_scheduler(engine, config) -> BackgroundScheduler:
    """Periodic sweep, reminder and outbox jobs for single-process deployments"""
    scheduler = BackgroundScheduler(timezone='UTC')

    scheduler.add_job(
        func=_run(engine.sweeper.run_sweep, 'deadline sweep'),
        trigger='interval',
        minutes=config.SWEEP_INTERVAL_MINUTES,
        id='deadline_sweep',
        max_instances=1,
        coalesce=True
    )
    scheduler.add_job(
        func=_run(engine.sweeper.send_deadline_warnings, 'deadline warnings'),
        trigger='interval',
        minutes=config.WARNING_INTERVAL_MINUTES,
        id='deadline_warnings',
        max_instances=1,
        coalesce=True
    )
    scheduler.add_job(
        func=_run(engine.sweeper.send_final_reminders, 'final reminders'),
        trigger='interval',
        minutes=config.WARNING_INTERVAL_MINUTES,
        id='final_reminders',
        max_instances=1,
        coalesce=True
    )
    scheduler.add_job(
        func=_run(engine.dispatcher.dispatch_pending, 'notification dispatch'),
        trigger='interval',
        minutes=config.DISPATCH_INTERVAL_MINUTES,
        id='notification_dispatch',
        max_instances=1,
        coalesce=True
    )

    scheduler.start()
    atexit.register(lambda: scheduler.shutdown(wait=False))
    logger.info("Background scheduler started")
    return scheduler


def _run(job, name):
    def wrapper():
        try:
            job()
        except Exception as e:
            logger.error(f"Error in scheduled {name}: {str(e)}")
    wrapper.__name__ = name.replace(' ', '_')
    return wrapper
