# Import important modules and create app package
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_migrate import Migrate
from dotenv import load_dotenv
import os

# Load environment variables
load_dotenv()

# Initialize extensions
db = SQLAlchemy()
login_manager = LoginManager()
migrate = Migrate()


def _env_flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def create_app(config_overrides=None):
    # Initialize app
    app = Flask(__name__)

    # Configure app
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-key')
    app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///petcare_scheduling.db')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['WTF_CSRF_ENABLED'] = False
    app.config['AUTO_CREATE_TABLES'] = _env_flag('AUTO_CREATE_TABLES', True)
    app.config['LOG_LEVEL'] = os.environ.get('LOG_LEVEL', 'INFO')

    # Scheduling engine settings
    app.config['HOLD_TTL_SECONDS'] = int(os.environ.get('HOLD_TTL_SECONDS', 300))
    app.config['HOLD_MAX_TTL_SECONDS'] = int(os.environ.get('HOLD_MAX_TTL_SECONDS', 3600))
    app.config['BOOKING_WRITE_RETRIES'] = int(os.environ.get('BOOKING_WRITE_RETRIES', 3))
    app.config['LOCK_TIMEOUT_SECONDS'] = float(os.environ.get('LOCK_TIMEOUT_SECONDS', 5))
    app.config['SCHEDULING_CLOCK'] = None

    # External collaborators, wired by the deployment
    app.config['CALENDAR_SYNC_CLIENT'] = None
    app.config['REALTIME_BROADCASTER'] = None

    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(app.config['LOG_LEVEL'])

    # Initialize extensions with app
    db.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': {
            'code': 'UNAUTHORIZED',
            'message': 'An authenticated actor is required',
            'details': {},
        }}), 401

    # Scheduling engine and its event subscribers
    from petcare.scheduling.engine import SchedulingEngine
    from petcare.scheduling.subscribers import connect_subscribers

    app.extensions['scheduling'] = SchedulingEngine.from_config(app.config)
    app.extensions['calendar_sync_client'] = app.config['CALENDAR_SYNC_CLIENT']
    app.extensions['realtime_broadcaster'] = app.config['REALTIME_BROADCASTER']
    connect_subscribers()

    # Register blueprints
    from petcare.appointments.routes import appointments_bp
    from petcare.holds.routes import holds_bp
    from petcare.holds.commands import holds_cli
    from petcare.utils.api import register_error_handlers

    app.register_blueprint(appointments_bp)
    app.register_blueprint(holds_bp)
    app.cli.add_command(holds_cli)
    register_error_handlers(app)

    # Create database tables
    with app.app_context():
        from petcare import models  # noqa: F401
        if app.config['AUTO_CREATE_TABLES']:
            db.create_all()
            app.logger.info('Database tables created successfully')

    return app
