from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, func
from ..database import Base


class Project(Base):
    """
    하나의 애자일 프로젝트를 나타냅니다.
    릴리스 계획, 사용자 스토리, 멤버십은 project_id로 이 모델에 종속됩니다.
    project_key는 ID가 할당된 뒤에 확정되는 사람이 읽을 수 있는 키입니다. (예: 'PROJ-007')
    """
    __tablename__ = "projects"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    project_key = Column(String(50), unique=True, nullable=False, index=True)
    project_code = Column(String(50), unique=True, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
