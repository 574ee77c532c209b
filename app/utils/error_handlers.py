# /app/utils/error_handlers.py
from flask import jsonify, current_app
from pydantic import ValidationError
from app.extensions import db
from app.utils.stripe_util import StripeError

def _validation_details(error: ValidationError):
    return [
        {
            'field': '.'.join(str(part) for part in err['loc']) or None,
            'message': err['msg'],
        }
        for err in error.errors()
    ]

def register_error_handlers(app):
    @app.errorhandler(ValidationError)
    def invalid_request(error):
        return jsonify({'error': 'Invalid request', 'details': _validation_details(error)}), 400

    @app.errorhandler(StripeError)
    def payment_processor_error(error):
        db.session.rollback()
        current_app.logger.error(f"Payment processor error: {error.message}")
        return jsonify({'error': 'Payment processor error', 'details': error.message}), 502

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Resource not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'error': 'Method not allowed'}), 405

    @app.errorhandler(429)
    def rate_limited(error):
        return jsonify({'error': 'Too many requests', 'details': str(error.description)}), 429

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        current_app.audit_logger.error(f"Internal server error: {str(error)}")
        return jsonify({'error': 'Internal server error'}), 500
