from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, UniqueConstraint, func
from ..database import Base
from .enums import UserRole


class ProjectMember(Base):
    """
    사용자(User), 프로젝트(Project), 역할(Role) 사이의 삼항 관계를 나타냅니다.
    한 사용자는 같은 프로젝트에서 여러 역할을 가질 수 있으며, 역할마다 한 행이 저장됩니다.
    (project_id, user_id, role) 조합은 저장소 수준에서도 유일해야 합니다.
    """
    __tablename__ = "project_member_roles"
    __table_args__ = (
        UniqueConstraint("project_id", "user_id", "role", name="uq_project_user_role"),
    )
    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role = Column(Enum(UserRole, native_enum=False, length=50), nullable=False)
    created_at = Column(DateTime, server_default=func.now())
