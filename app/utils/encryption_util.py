# /app/utils/encryption_util.py
import json
from cryptography.fernet import Fernet, InvalidToken
from flask import current_app

class Encryptor:
    """
    Encrypts patient and therapist PII at rest.
    It must be initialized with the Flask app context to load the key.
    """
    def __init__(self, app=None):
        self.fernet = None
        if app:
            self.init_app(app)

    def init_app(self, app):
        """Initializes the Fernet suite with the key from the app's config."""
        key = app.config.get('PII_ENCRYPTION_KEY')
        if not key:
            raise ValueError("PII_ENCRYPTION_KEY not set in the Flask application config.")

        self.fernet = Fernet(key.encode() if isinstance(key, str) else key)

    def encrypt(self, data: str) -> str:
        if self.fernet is None:
            raise RuntimeError("Encryptor has not been initialized with an app context.")

        if not isinstance(data, str):
            data = str(data)

        return self.fernet.encrypt(data.encode('utf-8')).decode('utf-8')

    def decrypt(self, token: str) -> str | None:
        """Decrypts a token; returns None for empty or unreadable values."""
        if self.fernet is None:
            raise RuntimeError("Encryptor has not been initialized with an app context.")

        if not token:
            return None

        try:
            return self.fernet.decrypt(token.encode('utf-8')).decode('utf-8')
        except InvalidToken:
            current_app.logger.error("Decryption failed: Invalid token provided.")
            return None

    def encrypt_json(self, value) -> str:
        return self.encrypt(json.dumps(value))

    def decrypt_json(self, token, default=None):
        plain = self.decrypt(token)
        if plain is None:
            return default
        try:
            return json.loads(plain)
        except ValueError:
            current_app.logger.error("Decrypted value is not valid JSON.")
            return default

# Create a single, uninitialized instance to be imported by other modules.
encryptor = Encryptor()
