import hashlib
import logging

from agiletrack.config import get_settings
from .database import engine, SessionLocal, Base
from .models import User, UserRole

logger = logging.getLogger(__name__)


def initialize_db(bind=None, session_factory=None, settings=None):
    """
    DB와 테이블을 생성하고, 설정되어 있다면 시스템 관리자 계정을 생성합니다.

    관리자 계정은 AGILETRACK_ADMIN_USERNAME / _PASSWORD / _EMAIL 환경 변수가
    모두 있을 때만, 그리고 같은 이름의 사용자가 없을 때만 생성됩니다.

    Returns:
        관리자 계정을 새로 만들었으면 True.
    """
    bind = bind or engine
    session_factory = session_factory or SessionLocal
    settings = settings or get_settings()

    # 모든 테이블을 생성합니다. (이미 존재하면 생성하지 않음)
    Base.metadata.create_all(bind=bind)
    logger.info("Database tables are ready.")

    if not (settings.admin_username and settings.admin_password and settings.admin_email):
        return False

    db = session_factory()
    try:
        if db.query(User).filter(User.username == settings.admin_username).first():
            logger.info("Admin user '%s' already exists. Skipping bootstrap.", settings.admin_username)
            return False

        password_hash = hashlib.sha256(settings.admin_password.encode('utf-8')).hexdigest()
        admin_user = User(
            username=settings.admin_username, email=settings.admin_email.lower(),
            password_hash=password_hash, full_name="System Administrator", active=True
        )
        admin_user.set_system_roles([UserRole.SYSTEM_ADMIN])
        db.add(admin_user)
        db.commit()
        logger.info("Created system administrator '%s'.", settings.admin_username)
        return True
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == '__main__':
    logging.basicConfig(level=get_settings().log_level)
    initialize_db()
