import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    DATABASE_URL = os.environ.get('DATABASE_URL') or 'sqlite:///review_engine.db'
    SQLALCHEMY_DATABASE_URI = DATABASE_URL

    # API Keys
    STRIPE_SECRET_KEY = os.environ.get('STRIPE_SECRET_KEY')
    STRIPE_WEBHOOK_SECRET = os.environ.get('STRIPE_WEBHOOK_SECRET')
    SENDGRID_API_KEY = os.environ.get('SENDGRID_API_KEY')
    SENDGRID_FROM_EMAIL = os.environ.get('SENDGRID_FROM_EMAIL', 'noreply@fraternaladmonition.com')
    SENDGRID_FROM_NAME = os.environ.get('SENDGRID_FROM_NAME', 'Fraternal Admonition')

    # Identity provider (admin API used to resolve reviewer emails)
    IDENTITY_API_URL = os.environ.get('IDENTITY_API_URL')
    IDENTITY_SERVICE_KEY = os.environ.get('IDENTITY_SERVICE_KEY')
    IDENTITY_TIMEOUT_SECONDS = float(os.environ.get('IDENTITY_TIMEOUT_SECONDS', '10'))

    # Application Settings
    APP_URL = os.environ.get('APP_URL', 'http://localhost:3000')
    CRON_SECRET = os.environ.get('CRON_SECRET')

    # Assignment defaults (overridable per contest through voting_rules)
    DEFAULT_DEADLINE_DAYS = int(os.environ.get('DEFAULT_DEADLINE_DAYS', '7'))
    REVIEWERS_PER_VERIFICATION = int(os.environ.get('REVIEWERS_PER_VERIFICATION', '10'))
    REVIEWS_PER_REVIEWER = int(os.environ.get('REVIEWS_PER_REVIEWER', '10'))
    FINALIST_COUNT = int(os.environ.get('FINALIST_COUNT', '100'))
    TRIM_THRESHOLD = int(os.environ.get('TRIM_THRESHOLD', '5'))
    RESULTS_VISIBLE = os.environ.get('RESULTS_VISIBLE', 'false').lower() == 'true'

    # Deadline sweeps
    WARNING_WINDOW_HOURS = (23, 24)
    FINAL_REMINDER_WINDOW_HOURS = (1, 2)
    EXPIRED_BLACKLIST_THRESHOLD = 2
    EXPIRED_BLACKLIST_DAYS = 30
    VERIFICATION_TIMEOUT_DAYS = 14
    MIN_VERIFICATION_REVIEWS = 8

    # Integrity score
    INTEGRITY_PENALTY_EXPIRED = int(os.environ.get('INTEGRITY_PENALTY_EXPIRED', '-2'))
    INTEGRITY_PENALTY_MISSED_AT_PHASE_END = int(os.environ.get('INTEGRITY_PENALTY_MISSED_AT_PHASE_END', '-5'))
    INTEGRITY_FLAG_THRESHOLD = -20
    QUALIFIED_EVALUATOR_MIN_COMPLETED = 3

    # Reviews
    SCORE_MIN = 1
    SCORE_MAX = 5
    COMMENT_MAX_LENGTH = 100

    # Retry policy for outbound calls and per-reviewer panel creation
    RETRY_MAX_ATTEMPTS = int(os.environ.get('RETRY_MAX_ATTEMPTS', '3'))
    RETRY_BASE_DELAY_SECONDS = float(os.environ.get('RETRY_BASE_DELAY_SECONDS', '1.0'))
    RETRY_MAX_JITTER_SECONDS = float(os.environ.get('RETRY_MAX_JITTER_SECONDS', '1.0'))

    # Settings cache
    SETTINGS_CACHE_TTL_SECONDS = float(os.environ.get('SETTINGS_CACHE_TTL_SECONDS', '10'))

    # Notification outbox
    EMAIL_SEND_INTERVAL_SECONDS = float(os.environ.get('EMAIL_SEND_INTERVAL_SECONDS', '0.6'))
    NOTIFICATION_BATCH_SIZE = int(os.environ.get('NOTIFICATION_BATCH_SIZE', '100'))
    # A job left SENDING longer than this was interrupted mid-delivery
    NOTIFICATION_CLAIM_LEASE_MINUTES = int(os.environ.get('NOTIFICATION_CLAIM_LEASE_MINUTES', '15'))
    NOTIFICATION_MAX_ATTEMPTS = int(os.environ.get('NOTIFICATION_MAX_ATTEMPTS', '3'))

    # Scheduler
    SCHEDULER_ENABLED = os.environ.get('SCHEDULER_ENABLED', 'false').lower() == 'true'
    SWEEP_INTERVAL_MINUTES = int(os.environ.get('SWEEP_INTERVAL_MINUTES', '15'))
    WARNING_INTERVAL_MINUTES = 60
    DISPATCH_INTERVAL_MINUTES = 1

    # Token Settings
    ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24  # 24 hours

    # Logging
    LOG_FILE = 'logs/review_engine.log'
    LOG_LEVEL = 'INFO'


class DevelopmentConfig(Config):
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    DEBUG = True
    TESTING = True
    DATABASE_URL = 'sqlite:///test_review_engine.db'
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    RETRY_BASE_DELAY_SECONDS = 0
    RETRY_MAX_JITTER_SECONDS = 0
    EMAIL_SEND_INTERVAL_SECONDS = 0
    SCHEDULER_ENABLED = False


class ProductionConfig(Config):
    DEBUG = False
    TESTING = False


config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}
