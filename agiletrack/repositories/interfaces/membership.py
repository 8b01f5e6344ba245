from abc import ABC, abstractmethod
from typing import List, Optional
from agiletrack.database import models

class IMembershipRepository(ABC):
    @abstractmethod
    def insert(self, membership: models.ProjectMember) -> models.ProjectMember:
        """
        멤버십 한 행을 삽입합니다.

        Raises:
            DuplicateEntryError: (project_id, user_id, role) 조합이 이미 존재할 때.
        """
        pass

    @abstractmethod
    def find_by_triple(self, project_id: int, user_id: int, role: models.UserRole) -> Optional[models.ProjectMember]:
        """(프로젝트, 사용자, 역할) 조합으로 멤버십을 조회합니다."""
        pass

    @abstractmethod
    def delete_by_triple(self, project_id: int, user_id: int, role: models.UserRole) -> int:
        """(프로젝트, 사용자, 역할) 조합의 멤버십을 삭제합니다."""
        pass

    @abstractmethod
    def delete_by_pair(self, project_id: int, user_id: int) -> int:
        """해당 프로젝트에서 사용자의 모든 멤버십을 삭제합니다."""
        pass

    @abstractmethod
    def roles_by_pair(self, project_id: int, user_id: int) -> List[models.UserRole]:
        """해당 프로젝트에서 사용자가 가진 역할 목록을 조회합니다."""
        pass

    @abstractmethod
    def list_by_project(self, project_id: int) -> List[models.ProjectMember]:
        """
        특정 프로젝트의 모든 멤버십 행을 조회합니다.

        Returns:
            user_id, role 순으로 정렬된 ProjectMember 리스트.
        """
        pass

    @abstractmethod
    def delete_by_project(self, project_id: int) -> int:
        """프로젝트의 모든 멤버십을 삭제합니다."""
        pass

    @abstractmethod
    def delete_by_user(self, user_id: int) -> int:
        """사용자의 모든 프로젝트 멤버십을 삭제합니다."""
        pass
