from sqlalchemy import select
from werkzeug.security import generate_password_hash
from .. import db
from ..models import User

ROLES = ("admin", "viewer")


def ensure_user(username: str, password: str, role: str = "admin"):
    """
    Creates a back-office account, or resets the password and role of an existing one.
    Returns: (user, created)
    """
    role = (role or "").strip().lower()
    if role not in ROLES:
        raise ValueError(f"Unknown role '{role}'. Expected one of: {', '.join(ROLES)}.")
    if not username or not password:
        raise ValueError("Username and password are required.")

    user = db.session.execute(
        select(User).filter_by(username=username)
    ).scalars().first()
    created = user is None
    if created:
        user = User(username=username)
        db.session.add(user)
    user.password_hash = generate_password_hash(password)
    user.role = role
    user.is_active = True
    db.session.commit()
    return user, created
