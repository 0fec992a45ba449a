"""
Flask Application Factory
Initializes and configures the kiosk application
"""

import os
from flask import Flask, current_app
from config import config
from kstore.models import db


def create_app(config_name='default', gateway=None):
    """
    Application factory pattern
    Creates and configures Flask application

    Args:
        config_name: Key into config.config
        gateway: Optional RemoteGateway replacement (tests pass a fake)
    """
    app = Flask(__name__)

    # Load configuration
    app.config.from_object(config[config_name])

    # Validate secret key in production
    if config_name == 'production':
        if not app.config.get('SECRET_KEY') or app.config['SECRET_KEY'] == 'dev-secret-key-change-in-production':
            raise ValueError("Production requires a secure SECRET_KEY. Set it via environment variable.")

    # Initialize extensions
    db.init_app(app)

    if not app.config.get('TESTING'):
        os.makedirs(app.config['LOG_FOLDER'], exist_ok=True)

    from kstore.services.engine import KioskEngine
    engine = KioskEngine(app, gateway=gateway)
    app.extensions['kstore'] = engine

    # Register blueprints
    from kstore.routes.kiosk import bp as kiosk_bp
    app.register_blueprint(kiosk_bp, url_prefix='/api/kiosk')

    engine.start()
    return app


def get_engine(app=None):
    """The KioskEngine attached to app (or the current app)"""
    app = app or current_app
    return app.extensions['kstore']
