from sqlalchemy import CheckConstraint, Column, Date, DateTime, Enum, ForeignKey, Integer, String, Text, func
from ..database import Base
from .enums import ReleaseStatus


class ReleasePlan(Base):
    """
    프로젝트에 속한 릴리스 계획을 나타냅니다.
    target_date는 start_date보다 앞설 수 없으며, 이 규칙은 CHECK 제약으로도 보장됩니다.
    생성자(created_by_user_id)는 사용자가 삭제되면 NULL이 됩니다.
    """
    __tablename__ = "release_plans"
    __table_args__ = (
        CheckConstraint("target_date >= start_date", name="ck_release_plan_dates"),
    )
    id = Column(Integer, primary_key=True, index=True)
    release_key = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    goals = Column(Text)
    start_date = Column(Date, nullable=False)
    target_date = Column(Date, nullable=False)
    status = Column(Enum(ReleaseStatus, native_enum=False, length=20), nullable=False, default=ReleaseStatus.PLANNED)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    created_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
