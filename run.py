"""
Application Entry Point
Initializes and runs the kiosk application with background sync services
"""

import os
import logging
from kstore import create_app, get_engine
from kstore.models import db

# Determine configuration environment
config_name = os.environ.get('FLASK_ENV', 'development')
app = create_app(config_name)

# Setup logging
if not os.path.exists(app.config['LOG_FOLDER']):
    os.makedirs(app.config['LOG_FOLDER'])

logging.basicConfig(
    level=getattr(logging, app.config['LOG_LEVEL']),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(os.path.join(app.config['LOG_FOLDER'], 'kstore.log')),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)


@app.shell_context_processor
def make_shell_context():
    """Make database and engine available in Flask shell"""
    engine = get_engine(app)
    return {
        'db': db,
        'engine': engine,
        'kiosk': engine.kiosk,
        'store': engine.store,
        'queue': engine.queue,
    }


@app.cli.command()
def init_db():
    """Create the local tables"""
    logger.info("Initializing database...")
    db.create_all()
    logger.info("Database initialized successfully!")


@app.cli.command()
def run_sync():
    """Manually trigger sync operation"""
    engine = get_engine(app)
    engine.connectivity.check()
    report = engine.sync_service.sync_all()
    logger.info(f"Sync finished: {report.status} ({report.synced} synced, {report.skipped} skipped)")
    if report.error:
        logger.warning(f"Sync stopped at {report.failed_op_id}: {report.error}")


@app.cli.command()
def sync_status():
    """Show pending operations and the last sync result"""
    engine = get_engine(app)
    status = engine.sync_service.get_sync_status()
    for key, value in status.items():
        print(f"{key}: {value}")


@app.cli.command()
def purge_synced():
    """Delete synced queue entries past the retention window"""
    purged = get_engine(app).sync_service.cleanup()
    logger.info(f"Purged {purged} synced entries")


def start_background_services():
    """Start background sync and connectivity probing"""
    logger.info("Starting background services...")

    engine = get_engine(app)
    engine.connectivity.check()

    if app.config['ENABLE_SYNC'] and app.config['AUTO_SYNC']:
        engine.sync_service.start_scheduler()
        logger.info("Sync service started")


if __name__ == '__main__':
    # Check if running in development mode
    is_dev = os.environ.get('FLASK_ENV', 'development') == 'development'
    use_reloader = os.environ.get('FLASK_USE_RELOADER', 'true').lower() == 'true'

    with app.app_context():
        # Start background services (only if not using reloader to avoid duplicate services)
        if not use_reloader or os.environ.get('WERKZEUG_RUN_MAIN') == 'true':
            start_background_services()

    # Run the application
    logger.info(f"Starting {app.config['BUSINESS_NAME']} kiosk...")
    logger.info(f"Debug mode: {is_dev}, Auto-reload: {use_reloader}")

    app.run(
        host='127.0.0.1',
        port=5001,
        debug=is_dev,
        use_reloader=use_reloader
    )
