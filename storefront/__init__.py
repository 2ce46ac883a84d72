from flask import Flask, jsonify, request
from flask_migrate import Migrate
from flask_login import LoginManager
from storefront.extensions import db
from storefront.config import Config
from storefront.errors import ServiceError
from storefront.middleware import setup_auth_middleware
from storefront.services.audit_service import configure_major_events_log
import click
import logging

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

migrate = Migrate()
login_manager = LoginManager()


def configure_logging(app):
    handlers = [logging.StreamHandler()]
    if app.config.get('LOG_FILE'):
        handlers.append(logging.FileHandler(app.config['LOG_FILE']))
    # basicConfig is a no-op once the root logger has handlers, so repeated
    # app creation in tests does not stack them.
    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format=LOG_FORMAT,
        handlers=handlers,
    )
    configure_major_events_log(app.config.get('AUDIT_LOG_FILE'))


def register_error_handlers(app):

    @app.errorhandler(ServiceError)
    def handle_service_error(error):
        db.session.rollback()
        logger.info(
            "%s on %s %s: %s",
            type(error).__name__,
            request.method,
            request.path,
            error.message,
        )
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        return jsonify({'error': 'Method not allowed'}), 405


def register_commands(app):

    @app.cli.command('expire-orders')
    def expire_orders_command():
        """Cancel pending bank transfers whose payment deadline passed."""
        from storefront.services.audit_service import log_audit
        from storefront.services.order_service import expire_overdue_orders

        expired = expire_overdue_orders()
        db.session.commit()
        for order in expired:
            log_audit(
                actor_id=None,
                actor_role='SYSTEM',
                action='ORDER_AUTO_CANCEL_UNPAID',
                target_type='ORDER',
                target_id=order.id,
                payload={'deadline': order.payment_deadline},
            )
        click.echo(f'Expired {len(expired)} orders')


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    from storefront.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Not logged in', 'login_required': True}), 401

    # Register blueprints
    from storefront.blueprints import (
        admin,
        auth,
        gift_cards,
        orders,
        products,
        promo_codes,
        settings,
        users,
        wallet,
    )

    app.register_blueprint(auth.bp)
    app.register_blueprint(users.bp)
    app.register_blueprint(products.bp)
    app.register_blueprint(orders.bp)
    app.register_blueprint(admin.bp)
    app.register_blueprint(wallet.bp)
    app.register_blueprint(promo_codes.bp)
    app.register_blueprint(gift_cards.bp)
    app.register_blueprint(settings.bp)

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({'status': 'ok'})

    register_error_handlers(app)
    register_commands(app)

    # Site-wide login protection for /api/
    setup_auth_middleware(app)

    # Tables are managed via Flask-Migrate: run 'flask db upgrade'
    logger.info("Flask application initialized")
    return app
