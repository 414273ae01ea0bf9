import logging
import re

from flask import jsonify, request
from flask_login import current_user, login_required, login_user, logout_user

from streakr import db, limiter, login_manager
from streakr.errors import InvalidRequest
from streakr.models import User
from streakr.routes.auth import bp

logger = logging.getLogger(__name__)

USERNAME_RE = re.compile(r"^[A-Za-z0-9_.-]{3,30}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "unauthorized", "message": "Please log in"}), 401


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidRequest("Expected a JSON object")
    return data


@bp.route("/register", methods=["POST"])
@limiter.limit("5 per hour")
def register():
    data = _json_body()
    username = str(data.get("username") or "").strip()
    email = str(data.get("email") or "").strip().lower()
    password = str(data.get("password") or "")

    if not USERNAME_RE.match(username):
        raise InvalidRequest("Username must be 3-30 letters, numbers, '.', '_' or '-'")
    if not EMAIL_RE.match(email):
        raise InvalidRequest("A valid email is required")
    if len(password) < 8:
        raise InvalidRequest("Password must be at least 8 characters")

    if User.query.filter(
        (User.username == username) | (User.email == email)
    ).first():
        raise InvalidRequest("Username or email already registered")

    user = User(
        username=username,
        email=email,
        first_name=(data.get("firstName") or data.get("first_name") or "").strip() or None,
        surname=(data.get("surname") or "").strip() or None,
        favourite_team=(data.get("team") or data.get("favourite_team") or "").strip() or None,
    )
    user.set_password(password)
    db.session.add(user)
    db.session.commit()

    login_user(user)
    logger.info(f"New player registered: {user.username}")
    return jsonify({"user": user.to_dict(include_private=True)}), 201


@bp.route("/login", methods=["POST"])
@limiter.limit("10 per minute")
def login():
    data = _json_body()
    identifier = str(data.get("username") or data.get("email") or "").strip()
    password = str(data.get("password") or "")

    user = User.query.filter(
        (User.username == identifier) | (User.email == identifier.lower())
    ).first()

    if user is None or not user.check_password(password):
        logger.info(f"Failed login for {identifier!r}")
        return jsonify({"error": "invalid_credentials", "message": "Invalid username or password"}), 401

    if not user.is_active:
        return jsonify({"error": "account_disabled", "message": "Account deactivated"}), 403

    login_user(user, remember=bool(data.get("remember")))
    user.update_last_login()
    db.session.commit()
    return jsonify({"user": user.to_dict(include_private=True)})


@bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"success": True})


@bp.route("/me")
@login_required
def me():
    data = current_user.to_dict(include_private=True)
    data["leagues"] = [league.to_dict() for league in current_user.get_leagues()]
    return jsonify({"user": data})
