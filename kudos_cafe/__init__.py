from flask import Flask, jsonify
from flask_migrate import Migrate
from flask_login import LoginManager
from kudos_cafe.extensions import db
from kudos_cafe.config import Config
from kudos_cafe.middleware import setup_auth_middleware
import logging
import os

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler('app.log'),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)

migrate = Migrate()
login_manager = LoginManager()
login_manager.login_view = 'auth.login'
login_manager.login_message = 'Please log in to access this page.'


def _register_error_handlers(app):
    from kudos_cafe.utils import wants_json_response

    @app.errorhandler(404)
    def not_found(error):
        if wants_json_response():
            return jsonify({'error': 'Not found'}), 404
        return error

    @app.errorhandler(413)
    def too_large(error):
        if wants_json_response():
            return jsonify({'error': 'Upload is too large'}), 413
        return error


def create_app(config_class=Config):
    static_dir = os.path.abspath(
        os.path.join(
            os.path.dirname(__file__),
            "..",
            "static"))
    app = Flask(
        __name__,
        static_folder=static_dir,
        static_url_path="/static",
    )
    app.config.from_object(config_class)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    from kudos_cafe.models import User
    from kudos_cafe.services import realtime_service

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @app.context_processor
    def inject_currency():
        return {'currency_symbol': app.config.get('CURRENCY_SYMBOL', '₱')}

    # Register blueprints (routes are absolute, no url_prefix)
    from kudos_cafe.blueprints import (
        admin,
        auth,
        messages,
        orders,
        public,
        reservations,
        reviews,
    )

    app.register_blueprint(auth.bp)
    app.register_blueprint(public.bp)
    app.register_blueprint(orders.bp)
    app.register_blueprint(messages.bp)
    app.register_blueprint(reservations.bp)
    app.register_blueprint(reviews.bp)
    app.register_blueprint(admin.bp)

    # Site-wide login protection
    setup_auth_middleware(app)
    _register_error_handlers(app)

    # Order message change notifications
    realtime_service.init_app(app)

    # Tables are managed via Flask-Migrate ('flask db upgrade'); the
    # seeding script falls back to db.create_all().

    logger.info("Kudos Cafe application initialized")
    return app
