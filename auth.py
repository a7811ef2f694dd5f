# auth.py
"""
Authentication and Authorization Module for RentalHub
Handles registration, login, password hashing, JWT issuing and role checks
for the three account types: renters ('user'), owners and admins.
"""

import os
import re
import json
import logging
from functools import wraps

from flask import jsonify
from flask_login import LoginManager, UserMixin, current_user
from flask_bcrypt import Bcrypt
from flask_jwt_extended import create_access_token, decode_token
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt import PyJWTError
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from db_mysql import engine
from errors import ApiError, Conflict, Forbidden, NotFound

bcrypt = Bcrypt()
login_manager = LoginManager()

logger = logging.getLogger(__name__)

ROLES = ("user", "owner", "admin")
MIN_PASSWORD_LENGTH = 6
# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_LENGTH = 72
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# ========== USER MODEL ==========
class User(UserMixin):
    """User model for Flask-Login"""
    def __init__(self, user_id, email, full_name, role, is_active=True):
        self.id = user_id
        self.email = email
        self.full_name = full_name
        self.role = role
        self._is_active = bool(is_active)

    def get_id(self):
        return str(self.id)

    @property
    def is_active(self):
        return self._is_active

    @property
    def is_admin(self):
        return self.role == "admin"

    def to_dict(self):
        return {
            "user_id": self.id,
            "name": self.full_name,
            "email": self.email,
            "role": self.role,
        }

# ========== FLASK-LOGIN CONFIGURATION ==========
@login_manager.user_loader
def load_user(user_id):
    """Load an active user by ID"""
    with engine.connect() as conn:
        row = conn.execute(text("""
            SELECT user_id, email, full_name, role, is_active
            FROM users
            WHERE user_id = :user_id AND is_active = 1
        """), {"user_id": user_id}).first()

    if row:
        return User(
            user_id=row[0],
            email=row[1],
            full_name=row[2],
            role=row[3],
            is_active=row[4],
        )
    return None


@login_manager.request_loader
def load_user_from_request(req):
    # Stateless: every request carries "Authorization: Bearer <jwt>"
    header = req.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None

    try:
        claims = decode_token(header[7:].strip())
        user_id = int(claims["sub"])
    except (JWTExtendedException, PyJWTError, KeyError, ValueError) as e:
        logger.info("Rejected bearer token: %s", e)
        return None

    return load_user(user_id)

# ========== AUTHENTICATION FUNCTIONS ==========

def hash_password(password):
    """Hash a password using bcrypt"""
    return bcrypt.generate_password_hash(password).decode("utf-8")


def check_password(password_hash, password):
    """Verify a password against its hash"""
    try:
        return bcrypt.check_password_hash(password_hash, password)
    except ValueError:
        # Malformed hash in the table
        return False


def validate_password(password):
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ApiError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(password.encode("utf-8")) > MAX_PASSWORD_LENGTH:
        raise ApiError(f"Password must be at most {MAX_PASSWORD_LENGTH} bytes long")


def issue_token(user):
    """Signed JWT carrying the user id plus role and display name"""
    return create_access_token(
        identity=str(user.id),
        additional_claims={"role": user.role, "name": user.full_name},
    )


def register_user(name, email, password, role, admin_code=None):
    """
    Register a new account
    Returns: the created User
    """
    name = (name or "").strip()
    email = (email or "").strip().lower()
    role = (role or "").strip().lower()
    password = password or ""

    if not name or not email or not password or not role:
        raise ApiError("All fields are required")

    if role not in ROLES:
        raise ApiError("Invalid role. Must be user, owner, or admin")

    if not EMAIL_RE.match(email):
        raise ApiError("Invalid email format")

    validate_password(password)

    if role == "admin":
        expected = os.getenv("ADMIN_SIGNUP_CODE")
        if not expected or admin_code != expected:
            raise Forbidden("Admin registration requires a valid admin code")

    password_hash = hash_password(password)

    with engine.begin() as conn:
        existing = conn.execute(text("""
            SELECT user_id FROM users WHERE email = :email
        """), {"email": email}).first()
        if existing:
            raise Conflict("Email already registered")

        try:
            result = conn.execute(text("""
                INSERT INTO users (username, email, password_hash, full_name, role, is_active)
                VALUES (:username, :email, :password_hash, :full_name, :role, 1)
            """), {
                "username": email.split("@")[0],
                "email": email,
                "password_hash": password_hash,
                "full_name": name,
                "role": role,
            })
        except IntegrityError:
            raise Conflict("Email already registered")

        user_id = result.lastrowid

    logger.info("Registered %s account %s", role, user_id)
    return User(user_id, email, name, role, True)


def authenticate_user(email, password, expected_role=None):
    """
    Authenticate user with email and password
    expected_role lets the owner/admin login pages refuse other account types
    Returns: the User
    """
    email = (email or "").strip().lower()
    if not email or not password:
        raise ApiError("Email and password are required")

    with engine.connect() as conn:
        row = conn.execute(text("""
            SELECT user_id, email, password_hash, full_name, role, is_active
            FROM users
            WHERE email = :email
        """), {"email": email}).first()

    if not row:
        raise ApiError("Invalid email or password", 401)

    user_id, email, password_hash, full_name, role, is_active = row

    if not check_password(password_hash, password):
        raise ApiError("Invalid email or password", 401)

    if not is_active:
        raise ApiError("Invalid email or password", 401)

    if expected_role and expected_role != role:
        raise Forbidden(f"This login is for {expected_role} accounts")

    with engine.begin() as conn:
        conn.execute(text("""
            UPDATE users SET last_login = CURRENT_TIMESTAMP WHERE user_id = :user_id
        """), {"user_id": user_id})

    return User(user_id, email, full_name, role, is_active)


def change_password(user_id, old_password, new_password):
    """Change user password"""
    with engine.connect() as conn:
        row = conn.execute(text("""
            SELECT password_hash FROM users WHERE user_id = :user_id
        """), {"user_id": user_id}).first()

    if not row or not check_password(row[0], old_password or ""):
        raise ApiError("Current password is incorrect")

    validate_password(new_password or "")
    set_password(user_id, new_password)
    return True


def set_password(user_id, new_password):
    # Shared by change-password and the reset script
    with engine.begin() as conn:
        result = conn.execute(text("""
            UPDATE users SET password_hash = :password_hash WHERE user_id = :user_id
        """), {"user_id": user_id, "password_hash": hash_password(new_password)})
        if result.rowcount == 0:
            raise NotFound("User not found")


def log_user_activity(user_id, activity_type, activity_data=None):
    """Log user activity to database; never fails the calling request"""
    try:
        with engine.begin() as conn:
            conn.execute(text("""
                INSERT INTO user_activity (user_id, activity_type, activity_data)
                VALUES (:user_id, :activity_type, :activity_data)
            """), {
                "user_id": user_id,
                "activity_type": activity_type,
                "activity_data": json.dumps(activity_data, default=str) if activity_data else None,
            })
    except Exception as e:
        logger.warning("Error logging activity %s for user %s: %s", activity_type, user_id, e)

# ========== DECORATORS ==========

def login_required(f):
    """Decorator to require a valid bearer token"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({"ok": False, "error": "Missing or invalid token"}), 401
        return f(*args, **kwargs)
    return decorated_function


def roles_required(*roles):
    """Decorator to require one of the given roles"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({"ok": False, "error": "Missing or invalid token"}), 401
            if current_user.role not in roles:
                return jsonify({"ok": False, "error": "Forbidden"}), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator


admin_required = roles_required("admin")

# ========== ADMIN FUNCTIONS ==========

_USER_COLUMNS = """
    user_id, username, full_name AS name, email, phone, role, is_active,
    created_at AS join_date, last_login
"""


def get_all_users():
    """Get all users (admin only)"""
    with engine.connect() as conn:
        result = conn.execute(text(f"""
            SELECT {_USER_COLUMNS}
            FROM users
            ORDER BY created_at DESC, user_id DESC
        """))
        return [dict(r) for r in result.mappings()]


def get_user(user_id):
    with engine.connect() as conn:
        row = conn.execute(text(f"""
            SELECT {_USER_COLUMNS} FROM users WHERE user_id = :user_id
        """), {"user_id": user_id}).mappings().first()
    if not row:
        raise NotFound("User not found")
    return dict(row)


def update_user(user_id, data):
    """Update name, email, role or active flag (admin only)"""
    data = data or {}
    fields = {}
    if "name" in data:
        name = (data["name"] or "").strip()
        if not name:
            raise ApiError("name cannot be empty")
        fields["full_name"] = name
    if "email" in data:
        email = (data["email"] or "").strip().lower()
        if not EMAIL_RE.match(email):
            raise ApiError("Invalid email format")
        fields["email"] = email
    if "role" in data:
        role = (data["role"] or "").strip().lower()
        if role not in ROLES:
            raise ApiError("Invalid role. Must be user, owner, or admin")
        fields["role"] = role
    if "is_active" in data:
        fields["is_active"] = 1 if data["is_active"] else 0

    if not fields:
        raise ApiError("Nothing to update")

    set_clause = ", ".join(f"{col} = :{col}" for col in fields)
    try:
        with engine.begin() as conn:
            result = conn.execute(text(f"""
                UPDATE users SET {set_clause} WHERE user_id = :user_id
            """), {**fields, "user_id": user_id})
            if result.rowcount == 0:
                raise NotFound("User not found")
    except IntegrityError:
        raise Conflict("Email already registered")

    return get_user(user_id)


def delete_user(user_id):
    with engine.begin() as conn:
        result = conn.execute(text("DELETE FROM users WHERE user_id = :user_id"),
                              {"user_id": user_id})
        if result.rowcount == 0:
            raise NotFound("User not found")
    return True


def get_user_emails():
    with engine.connect() as conn:
        result = conn.execute(text("""
            SELECT email FROM users WHERE email IS NOT NULL AND is_active = 1
        """))
        return [row[0] for row in result]


def get_activity_summary(limit=100):
    """Most recent activity rows (admin only)"""
    with engine.connect() as conn:
        result = conn.execute(text("""
            SELECT a.activity_id, a.user_id, u.email, a.activity_type,
                   a.activity_data, a.created_at
            FROM user_activity a
            LEFT JOIN users u ON u.user_id = a.user_id
            ORDER BY a.created_at DESC, a.activity_id DESC
            LIMIT :limit
        """), {"limit": limit})

        activities = []
        for row in result.mappings():
            item = dict(row)
            if item["activity_data"]:
                try:
                    item["activity_data"] = json.loads(item["activity_data"])
                except ValueError:
                    logger.debug("Activity %s has non-JSON data", item["activity_id"])
            activities.append(item)
        return activities

