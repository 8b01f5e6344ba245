from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, String, Text, func
from ..database import Base
from .enums import StoryPriority, StoryStatus


class UserStory(Base):
    """
    프로젝트 백로그의 사용자 스토리를 나타냅니다.
    release_plan_id가 설정되어 있다면, 그 릴리스 계획은 반드시 같은 프로젝트에 속해야 합니다.
    """
    __tablename__ = "user_stories"
    id = Column(Integer, primary_key=True, index=True)
    story_key = Column(String(50), unique=True, nullable=False, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text)
    acceptance_criteria = Column(Text)
    story_points = Column(Integer)
    business_value = Column(Integer)
    is_mvp = Column(Boolean, nullable=False, default=False)
    status = Column(Enum(StoryStatus, native_enum=False, length=20), nullable=False, default=StoryStatus.NEW)
    priority = Column(Enum(StoryPriority, native_enum=False, length=20), default=StoryPriority.MEDIUM)
    sprint_ready = Column(Boolean, nullable=False, default=False)
    is_starred = Column(Boolean, nullable=False, default=False)

    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    release_plan_id = Column(Integer, ForeignKey("release_plans.id"), nullable=True, index=True)
    created_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    assigned_to_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
