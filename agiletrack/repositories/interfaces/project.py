from abc import ABC, abstractmethod
from typing import List, Optional
from agiletrack.database import models

class IProjectRepository(ABC):
    @abstractmethod
    def create(self, project_model: models.Project) -> models.Project:
        """새로운 프로젝트를 저장하고, ID가 할당된 모델을 반환합니다."""
        pass

    @abstractmethod
    def save(self, project_model: models.Project) -> models.Project:
        """변경된 프로젝트 정보를 저장소에 반영합니다."""
        pass

    @abstractmethod
    def find_by_id(self, project_id: int) -> Optional[models.Project]:
        """고유 ID로 특정 프로젝트를 조회합니다."""
        pass

    @abstractmethod
    def find_by_key(self, project_key: str) -> Optional[models.Project]:
        """프로젝트 키(예: 'PROJ-007')로 특정 프로젝트를 조회합니다."""
        pass

    @abstractmethod
    def find_by_code(self, project_code: str) -> Optional[models.Project]:
        """참여 코드로 특정 프로젝트를 조회합니다."""
        pass

    @abstractmethod
    def list_all(self) -> List[models.Project]:
        """모든 프로젝트의 목록을 조회합니다."""
        pass

    @abstractmethod
    def list_by_member(self, user_id: int) -> List[models.Project]:
        """사용자가 하나 이상의 역할로 소속된 프로젝트 목록을 조회합니다."""
        pass

    @abstractmethod
    def delete(self, project: models.Project) -> bool:
        """특정 프로젝트를 저장소에서 삭제합니다. (하위 엔티티 정리는 서비스가 담당)"""
        pass
