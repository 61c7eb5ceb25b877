from flask import request, session, current_app
from flask_login import login_user, logout_user, login_required, current_user
from sqlalchemy import select
from werkzeug.security import check_password_hash
from . import main_bp
from .. import db, limiter, issue_csrf_token
from ..api_utils import api_success, api_error
from ..models import User


def _user_dict(user):
    return {"user_id": user.user_id, "username": user.username, "role": user.role}


@main_bp.route("/login", methods=["POST"])
@limiter.limit("10 per minute")
def login():
    data = request.get_json(silent=True) or request.form
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""

    user = db.session.execute(select(User).filter_by(username=username)).scalars().first()
    if not user or not user.password_hash or not check_password_hash(user.password_hash, password):
        current_app.logger.info("Failed login for %s", username or "<blank>")
        return api_error("invalid_credentials", "Invalid username or password.", 401)
    if not user.is_active:
        return api_error("inactive", "Account is disabled.", 403)

    login_user(user)
    session.permanent = True
    return api_success({"user": _user_dict(user), "csrf_token": issue_csrf_token()})


@main_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    session.pop("csrf_token", None)
    session.pop("csrf_token_issued_at", None)
    return api_success()


@main_bp.route("/session", methods=["GET"])
@login_required
def session_info():
    return api_success({"user": _user_dict(current_user), "csrf_token": issue_csrf_token()})
