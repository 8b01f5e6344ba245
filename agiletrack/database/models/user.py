from typing import Iterable, Set

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, String, func
from sqlalchemy.orm import relationship
from ..database import Base
from .enums import UserRole


class UserSystemRole(Base):
    """
    사용자에게 직접 부여된 시스템 전역 역할 한 건을 나타냅니다.
    (user_id, role) 조합이 기본 키이므로 같은 역할을 두 번 가질 수 없습니다.
    """
    __tablename__ = "user_roles"
    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    role = Column(Enum(UserRole, native_enum=False, length=50), primary_key=True)


class User(Base):
    """
    시스템에 로그인하는 사용자를 나타냅니다.
    프로젝트 범위 역할은 ProjectMember 테이블에, 시스템 전역 역할은 user_roles 테이블에 저장됩니다.
    """
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, nullable=False, index=True)
    email = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    full_name = Column(String(100))
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    role_links = relationship("UserSystemRole", cascade="all, delete-orphan", lazy="selectin")

    @property
    def system_roles(self) -> Set[UserRole]:
        return {link.role for link in self.role_links}

    @property
    def is_system_admin(self) -> bool:
        return UserRole.SYSTEM_ADMIN in self.system_roles

    def set_system_roles(self, roles: Iterable[UserRole]):
        # 남아있는 역할의 행은 재사용해야 같은 기본 키로 DELETE/INSERT가 겹치지 않습니다.
        wanted = set(roles)
        kept = [link for link in self.role_links if link.role in wanted]
        existing = {link.role for link in kept}
        self.role_links = kept + [UserSystemRole(role=role) for role in sorted(wanted - existing, key=lambda r: r.value)]
