from flask import Flask
from app.extensions import db, bcrypt, migrate, jwt, limiter, cors
from app.utils.encryption_util import encryptor
from app.utils.stripe_util import stripe_client
from app.utils.error_handlers import register_error_handlers
from app.commands import register_commands
from config import config

def create_app(config_name='default'):
    app = Flask(__name__)
    app_config = config[config_name]
    app.config.from_object(app_config)

    # Initialize extensions
    db.init_app(app)
    bcrypt.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    limiter.init_app(app)
    cors.init_app(
        app,
        origins=app.config['ALLOWED_ORIGINS'],
        supports_credentials=True,
        allow_headers=['Content-Type', 'Authorization', 'X-Requested-With'],
        methods=['GET', 'POST', 'PUT', 'DELETE', 'OPTIONS']
    )

    # Initialize custom utilities
    encryptor.init_app(app)
    stripe_client.init_app(app)

    # Initialize app with config
    app_config.init_app(app)

    # Make every model known to SQLAlchemy before the first request
    from app.models import (  # noqa: F401
        user_models, patient_profile_models, appointment_models,
        balance_models, payment_models, system_models
    )

    # Register blueprints
    from app.api import api_bp
    app.register_blueprint(api_bp, url_prefix='/api')

    # Register error handlers and commands
    register_error_handlers(app)
    register_commands(app)

    # JWT revocation list checker
    @jwt.token_in_blocklist_loader
    def check_if_token_revoked(jwt_header, jwt_payload):
        from app.models.system_models import RevokedToken
        return RevokedToken.is_revoked(jwt_payload['jti'])

    return app
