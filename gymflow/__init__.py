"""
GymFlow - Automated Engagement Flow Engine
"""
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
import os
import logging

db = SQLAlchemy()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(config_name=None):
    from gymflow.config import config

    app = Flask(__name__)
    config_name = config_name or os.getenv('GYMFLOW_ENV', 'default')
    app.config.from_object(config[config_name])

    db.init_app(app)

    # Import models so their tables are registered on db.metadata
    from gymflow import models  # noqa: F401

    from gymflow.controllers.automation_controller import automation_bp
    app.register_blueprint(automation_bp)
    logger.info(f"GymFlow started ({config_name})")

    @app.route('/health')
    def health_check():
        return jsonify({'status': 'healthy', 'service': 'gymflow'})

    return app
