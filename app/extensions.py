# /app/extensions.py
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_migrate import Migrate
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_cors import CORS

db = SQLAlchemy()
bcrypt = Bcrypt()

# Money columns are Numeric; let autogenerate notice precision changes
migrate = Migrate(compare_type=True)

jwt = JWTManager()

# Storage comes from RATELIMIT_STORAGE_URI; per-route limits live in routes.py
limiter = Limiter(key_func=get_remote_address, headers_enabled=True)

cors = CORS()
