import logging
from typing import Any, Iterable, List, Set

from agiletrack.database import models
from agiletrack.repositories.interfaces import IMembershipRepository, IUnitOfWork, DuplicateEntryError
from agiletrack.services.consistency import ConsistencyGuard
from agiletrack.services.exceptions import InvariantViolationError

logger = logging.getLogger(__name__)


class MembershipStore:
    """
    (프로젝트, 사용자) → 프로젝트 범위 역할 집합의 매핑을 관리합니다.
    멤버십 관계 외의 Project/User 행은 건드리지 않습니다.
    """

    def __init__(self, membership_repo: IMembershipRepository, uow: IUnitOfWork, guard: ConsistencyGuard = None):
        """
        Args:
            membership_repo: 멤버십 행에 접근하기 위한 리포지토리.
            uow: 변경 작업을 하나의 트랜잭션으로 묶기 위한 Unit of Work.
            guard: 역할 값 검증에 사용할 ConsistencyGuard.
        """
        self.membership_repo = membership_repo
        self.uow = uow
        self.guard = guard or ConsistencyGuard()

    def add_role(self, project_id: int, user_id: int, role: Any) -> models.ProjectMember:
        """
        사용자에게 프로젝트 역할을 부여합니다. 이미 같은 역할이 있으면 기존 행을 그대로 반환합니다.

        Raises:
            ValidationError: 알 수 없는 역할일 때.
            InvariantViolationError: 사전 중복 검사를 통과했는데도 저장소의 유일성 제약에 걸렸을 때.
        """
        role = self.guard.coerce_role(role)
        with self.uow.atomic():
            existing = self.membership_repo.find_by_triple(project_id, user_id, role)
            if existing:
                return existing
            try:
                membership = self.membership_repo.insert(
                    models.ProjectMember(project_id=project_id, user_id=user_id, role=role)
                )
            except DuplicateEntryError as e:
                logger.error("Duplicate membership slipped past de-duplication: %s", e)
                raise InvariantViolationError(str(e)) from e
        logger.info("Granted %s on project %s to user %s", role.value, project_id, user_id)
        return membership

    def remove_role(self, project_id: int, user_id: int, role: Any):
        """사용자의 특정 프로젝트 역할을 회수합니다. 역할이 없으면 아무것도 하지 않습니다."""
        role = self.guard.coerce_role(role)
        with self.uow.atomic():
            self.membership_repo.delete_by_triple(project_id, user_id, role)

    def remove_all_roles(self, project_id: int, user_id: int):
        """해당 프로젝트에서 사용자의 모든 역할을 회수합니다. (멤버십 완전 해제)"""
        with self.uow.atomic():
            self.membership_repo.delete_by_pair(project_id, user_id)

    def roles_of(self, project_id: int, user_id: int) -> Set[models.UserRole]:
        return set(self.membership_repo.roles_by_pair(project_id, user_id))

    def is_member(self, project_id: int, user_id: int) -> bool:
        return bool(self.roles_of(project_id, user_id))

    def replace_roles(self, project_id: int, user_id: int, new_roles: Iterable[Any]) -> Set[models.UserRole]:
        """
        사용자의 프로젝트 역할 전체를 새 역할 집합으로 교체합니다.
        모든 역할 삭제와 새 역할 부여가 하나의 트랜잭션 안에서 이루어집니다.

        Returns:
            교체 후의 역할 집합.

        Raises:
            ValidationError: new_roles가 비어있을 때. (전체 해제는 remove_all_roles 사용)
        """
        roles = self.guard.check_role_replacement(new_roles)
        with self.uow.atomic():
            self.membership_repo.delete_by_pair(project_id, user_id)
            for role in sorted(roles, key=lambda r: r.value):
                self.add_role(project_id, user_id, role)
        return roles

    def members_of(self, project_id: int) -> List[models.ProjectMember]:
        return self.membership_repo.list_by_project(project_id)

    def purge_project(self, project_id: int) -> int:
        """프로젝트 삭제 시, 해당 프로젝트의 모든 멤버십을 삭제합니다."""
        with self.uow.atomic():
            return self.membership_repo.delete_by_project(project_id)

    def purge_user(self, user_id: int) -> int:
        """사용자 삭제 시, 모든 프로젝트에서 해당 사용자의 멤버십을 삭제합니다."""
        with self.uow.atomic():
            return self.membership_repo.delete_by_user(user_id)
