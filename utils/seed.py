from models import db
from models.user import ALL_ROLES, Role


def seed_roles():
    existing = {r.name for r in Role.query.all()}
    missing = [name for name in ALL_ROLES if name not in existing]
    for name in missing:
        db.session.add(Role(name=name))
    if missing:
        db.session.commit()


def get_role(name: str) -> Role:
    """Existing role by name, created (flushed, not committed) when absent."""
    role = Role.query.filter_by(name=name).first()
    if role is None:
        role = Role(name=name)
        db.session.add(role)
        db.session.flush()
    return role
