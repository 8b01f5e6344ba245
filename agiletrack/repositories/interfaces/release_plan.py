from abc import ABC, abstractmethod
from typing import List, Optional
from agiletrack.database import models

class IReleasePlanRepository(ABC):
    @abstractmethod
    def create(self, plan_model: models.ReleasePlan) -> models.ReleasePlan:
        """새로운 릴리스 계획을 저장하고, ID가 할당된 모델을 반환합니다."""
        pass

    @abstractmethod
    def save(self, plan_model: models.ReleasePlan) -> models.ReleasePlan:
        """변경된 릴리스 계획을 저장소에 반영합니다."""
        pass

    @abstractmethod
    def find_by_id(self, plan_id: int) -> Optional[models.ReleasePlan]:
        """고유 ID로 특정 릴리스 계획을 조회합니다."""
        pass

    @abstractmethod
    def find_by_key(self, release_key: str) -> Optional[models.ReleasePlan]:
        """릴리스 키(예: 'PROJ-007-042')로 특정 릴리스 계획을 조회합니다."""
        pass

    @abstractmethod
    def list_all(self) -> List[models.ReleasePlan]:
        """모든 릴리스 계획을 ID 순으로 조회합니다."""
        pass

    @abstractmethod
    def list_by_project_id(self, project_id: int) -> List[models.ReleasePlan]:
        """특정 프로젝트에 속한 릴리스 계획 목록을 조회합니다."""
        pass

    @abstractmethod
    def list_by_status(self, status: models.ReleaseStatus) -> List[models.ReleasePlan]:
        """특정 상태의 릴리스 계획 목록을 조회합니다."""
        pass

    @abstractmethod
    def count_stories(self, plan_id: int) -> int:
        """릴리스 계획에 연결된 사용자 스토리의 개수를 조회합니다."""
        pass

    @abstractmethod
    def delete(self, plan: models.ReleasePlan) -> bool:
        """특정 릴리스 계획을 저장소에서 삭제합니다."""
        pass

    @abstractmethod
    def delete_by_project_id(self, project_id: int) -> int:
        """프로젝트에 속한 모든 릴리스 계획을 삭제하고, 삭제된 개수를 반환합니다."""
        pass

    @abstractmethod
    def clear_creator(self, user_id: int) -> int:
        """해당 사용자가 생성한 릴리스 계획의 생성자 참조를 NULL로 바꿉니다."""
        pass
