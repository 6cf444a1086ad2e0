import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from config import get_settings
from models import Category, User, UserRole, UserStatus
from security import hash_password

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = (
    "Food & Dining",
    "Rent & Utilities",
    "Transportation",
    "Healthcare",
    "Entertainment",
    "Salary",
    "Gifts",
    "Insurance",
    "Investment",
    "Other",
)


def seed_admin(session: Session) -> bool:
    existing = session.scalar(select(User.id).where(User.role == UserRole.admin))
    if existing is not None:
        logger.info("seed_admin: skipped reason=admin_exists")
        return False
    settings = get_settings()
    session.add(
        User(
            username=settings.admin_username,
            email=settings.admin_email,
            password_hash=hash_password(settings.admin_password),
            role=UserRole.admin,
            status=UserStatus.active,
        )
    )
    session.flush()
    logger.info(f"seed_admin: created username={settings.admin_username!r}")
    return True


def seed_categories(session: Session) -> int:
    existing = {
        name.lower()
        for name in session.scalars(
            select(func.lower(Category.name)).where(Category.user_id.is_(None))
        )
    }
    created = 0
    for name in DEFAULT_CATEGORIES:
        if name.lower() in existing:
            continue
        session.add(Category(name=name, user_id=None))
        created += 1
    session.flush()
    logger.info(f"seed_categories: created={created}")
    return created


def seed_defaults(session: Session) -> None:
    seed_admin(session)
    seed_categories(session)
