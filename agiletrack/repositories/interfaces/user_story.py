from abc import ABC, abstractmethod
from typing import List, Optional
from agiletrack.database import models

class IUserStoryRepository(ABC):
    @abstractmethod
    def create(self, story_model: models.UserStory) -> models.UserStory:
        """새로운 사용자 스토리를 저장하고, ID가 할당된 모델을 반환합니다."""
        pass

    @abstractmethod
    def save(self, story_model: models.UserStory) -> models.UserStory:
        """변경된 사용자 스토리를 저장소에 반영합니다."""
        pass

    @abstractmethod
    def find_by_id(self, story_id: int) -> Optional[models.UserStory]:
        """고유 ID로 특정 사용자 스토리를 조회합니다."""
        pass

    @abstractmethod
    def find_by_key(self, story_key: str) -> Optional[models.UserStory]:
        """스토리 키(예: 'PROJ-007-015')로 특정 사용자 스토리를 조회합니다."""
        pass

    @abstractmethod
    def list_all(self) -> List[models.UserStory]:
        """모든 사용자 스토리를 ID 순으로 조회합니다."""
        pass

    @abstractmethod
    def list_by_project_id(self, project_id: int) -> List[models.UserStory]:
        """특정 프로젝트에 속한 사용자 스토리를 ID 순으로 조회합니다."""
        pass

    @abstractmethod
    def delete(self, story: models.UserStory) -> bool:
        """특정 사용자 스토리를 저장소에서 삭제합니다."""
        pass

    @abstractmethod
    def delete_by_project_id(self, project_id: int) -> int:
        """프로젝트에 속한 모든 사용자 스토리를 삭제하고, 삭제된 개수를 반환합니다."""
        pass

    @abstractmethod
    def unlink_release_plan(self, plan_id: int) -> int:
        """릴리스 계획에 연결된 모든 스토리의 연결을 해제합니다."""
        pass

    @abstractmethod
    def clear_user_references(self, user_id: int) -> int:
        """해당 사용자를 생성자 또는 담당자로 참조하는 스토리의 참조를 NULL로 바꿉니다."""
        pass
