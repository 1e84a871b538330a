import os
from flask import Flask, jsonify
from config.config import config
from review_engine.database import init_db
from review_engine.engine import EXTENSION_KEY, ReviewEngine
from review_engine.routes import admin, assignments, cron, submissions, webhooks
from review_engine.scheduler import start_scheduler
from review_engine.utils.logger import get_logger

logger = get_logger(__name__)


def create_app(config_name=None, engine: ReviewEngine = None):
    """Application factory"""
    config_name = config_name or os.environ.get('FLASK_ENV', 'default')
    config_class = config.get(config_name, config['default'])

    app = Flask(__name__)
    app.config.from_object(config_class)

    init_db()

    app.extensions[EXTENSION_KEY] = engine or ReviewEngine(config_class)

    app.register_blueprint(webhooks.bp, url_prefix='/api/webhooks')
    app.register_blueprint(cron.bp, url_prefix='/api/cron')
    app.register_blueprint(assignments.bp, url_prefix='/api/assignments')
    app.register_blueprint(submissions.bp, url_prefix='/api/submissions')
    app.register_blueprint(admin.bp, url_prefix='/api/admin')

    @app.route('/api/health')
    def health():
        return jsonify({'status': 'ok'}), 200

    if config_class.SCHEDULER_ENABLED and not config_class.TESTING:
        start_scheduler(app.extensions[EXTENSION_KEY], config_class)

    logger.info(f"Review engine started with '{config_name}' configuration")
    return app
