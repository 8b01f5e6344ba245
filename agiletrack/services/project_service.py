import logging
from typing import Any, Dict, Iterable, List, Optional

from agiletrack.database import models
from agiletrack.repositories.interfaces import (
    IUserRepository, IProjectRepository, IReleasePlanRepository, IUserStoryRepository, IUnitOfWork
)
from agiletrack.services.authorization import AuthorizationEngine, deny_unless
from agiletrack.services.consistency import ConsistencyGuard
from agiletrack.services.key_generator import IdentityKeyGenerator
from agiletrack.services.membership_store import MembershipStore
from agiletrack.services.exceptions import (
    ProjectCreationError, ProjectNotFoundError, UserNotFoundError, AccessDeniedError
)

logger = logging.getLogger(__name__)

MEMBER_ADMIN_ROLES = (models.UserRole.PRODUCT_OWNER, models.UserRole.SCRUM_MASTER)


def project_to_dict(project: models.Project) -> Dict[str, Any]:
    return {
        "id": project.id,
        "name": project.name,
        "description": project.description,
        "project_key": project.project_key,
        "project_code": project.project_code,
        "active": project.active is not False,
    }


class ProjectService:
    """프로젝트 생성/조회/삭제와 프로젝트 멤버십 관리 서비스를 제공합니다."""

    def __init__(self, user_repo: IUserRepository, project_repo: IProjectRepository,
                 release_plan_repo: IReleasePlanRepository, story_repo: IUserStoryRepository,
                 membership_store: MembershipStore, authz: AuthorizationEngine,
                 key_generator: IdentityKeyGenerator, uow: IUnitOfWork, guard: ConsistencyGuard = None):
        """
        ProjectService를 초기화합니다.

        Args:
            user_repo: 멤버로 지정된 사용자의 존재 여부를 확인하기 위한 리포지토리.
            project_repo: 프로젝트 데이터에 접근하기 위한 리포지토리.
            release_plan_repo: 프로젝트 삭제 시 릴리스 계획을 함께 삭제하기 위한 리포지토리.
            story_repo: 프로젝트 삭제 시 사용자 스토리를 함께 삭제하기 위한 리포지토리.
            membership_store: 프로젝트 멤버십 관리 객체.
            authz: 권한 판단 엔진.
            key_generator: 프로젝트 키 발급기.
            uow: 트랜잭션 경계.
        """
        self.user_repo = user_repo
        self.project_repo = project_repo
        self.release_plan_repo = release_plan_repo
        self.story_repo = story_repo
        self.membership_store = membership_store
        self.authz = authz
        self.key_generator = key_generator
        self.uow = uow
        self.guard = guard or ConsistencyGuard()

    def _get_project(self, project_id: int) -> models.Project:
        project = self.project_repo.find_by_id(project_id)
        if not project:
            raise ProjectNotFoundError(f"Project with id '{project_id}' not found.")
        return project

    def _get_user(self, user_id: int) -> models.User:
        user = self.user_repo.find_by_id(user_id)
        if not user:
            raise UserNotFoundError(f"User with id '{user_id}' not found.")
        return user

    def _require_member_admin(self, caller: str, project_id: int):
        deny_unless(
            self.authz.has_any_role(caller, project_id, MEMBER_ADMIN_ROLES),
            "Only a Product Owner or Scrum Master can manage project members."
        )

    def create_project(self, caller: str, name: str, members: List[Dict[str, Any]],
                       description: Optional[str] = None, key_prefix: Optional[str] = None,
                       project_code: Optional[str] = None) -> Dict[str, Any]:
        """
        새로운 프로젝트를 생성하고 초기 멤버에게 역할을 부여합니다.
        프로젝트 저장, 키 발급, 멤버십 부여가 모두 하나의 트랜잭션으로 처리됩니다.

        Args:
            caller: 호출자 사용자 이름. 활성 사용자라면 누구나 프로젝트를 만들 수 있습니다.
            name: 프로젝트 이름.
            members: {'user_id': int, 'roles': [...]} 형태의 초기 멤버 목록.
            description: 프로젝트 설명.
            key_prefix: 프로젝트 키 접두사. 없으면 기본 접두사를 사용합니다.
            project_code: 다른 사용자가 참여할 때 사용하는 참여 코드.

        Returns:
            생성된 프로젝트 정보와 멤버 목록을 담은 딕셔너리.

        Raises:
            AccessDeniedError: 알 수 없거나 비활성화된 호출자일 때.
            ValidationError: 이름, 멤버, 역할, 접두사가 규칙에 맞지 않을 때.
            ProjectCreationError: 참여 코드가 이미 사용 중일 때.
            UserNotFoundError: 멤버로 지정된 사용자가 없을 때.
        """
        if self.authz.resolve_caller(caller) is None:
            raise AccessDeniedError("Unknown or inactive user.")
        drafts = self.guard.check_project_draft(name, members)
        name = self.guard.check_text(name, "Project name")
        description = self.guard.check_text(description, "Description", required=False)
        project_code = self.guard.check_text(project_code, "Project code", required=False)
        if key_prefix:
            key_prefix = self.guard.check_key_prefix(key_prefix)
        if project_code and self.project_repo.find_by_code(project_code):
            raise ProjectCreationError(f"Project with code '{project_code}' already exists.")
        for user_id, _ in drafts:
            self._get_user(user_id)

        with self.uow.atomic():
            project = models.Project(
                name=name, description=description, project_code=project_code, active=True
            )
            project = self.key_generator.create_project(project, key_prefix)
            for user_id, roles in drafts:
                for role in sorted(roles, key=lambda r: r.value):
                    self.membership_store.add_role(project.id, user_id, role)

        result = project_to_dict(project)
        result["members"] = self._members_to_list(project.id)
        return result

    def list_projects(self, caller: str) -> List[Dict[str, Any]]:
        """
        호출자가 볼 수 있는 프로젝트 목록을 조회합니다.
        시스템 관리자는 모든 프로젝트를, 그 외 사용자는 자신이 멤버인 프로젝트만 봅니다.
        """
        user = self.authz.resolve_caller(caller)
        if user is None:
            raise AccessDeniedError("Unknown or inactive user.")
        if user.is_system_admin:
            projects = self.project_repo.list_all()
        else:
            projects = self.project_repo.list_by_member(user.id)
        return [project_to_dict(p) for p in projects]

    def get_project(self, caller: str, project_id: int) -> Dict[str, Any]:
        """
        ID로 특정 프로젝트를 조회합니다.

        Raises:
            AccessDeniedError: 호출자가 프로젝트 멤버가 아닐 때.
            ProjectNotFoundError: 해당 ID의 프로젝트를 찾을 수 없을 때.
        """
        deny_unless(self.authz.is_member(caller, project_id), "Only project members can view this project.")
        project = self._get_project(project_id)
        result = project_to_dict(project)
        result["members"] = self._members_to_list(project.id)
        return result

    def get_project_by_key(self, caller: str, project_key: str) -> Dict[str, Any]:
        project = self.project_repo.find_by_key(project_key)
        if not project:
            raise ProjectNotFoundError(f"Project with key '{project_key}' not found.")
        deny_unless(self.authz.is_member(caller, project.id), "Only project members can view this project.")
        result = project_to_dict(project)
        result["members"] = self._members_to_list(project.id)
        return result

    def list_members(self, caller: str, project_id: int) -> List[Dict[str, Any]]:
        deny_unless(self.authz.is_member(caller, project_id), "Only project members can view the member list.")
        self._get_project(project_id)
        return self._members_to_list(project_id)

    def _members_to_list(self, project_id: int) -> List[Dict[str, Any]]:
        members: Dict[int, List[str]] = {}
        for membership in self.membership_store.members_of(project_id):
            members.setdefault(membership.user_id, []).append(membership.role.value)
        return [{"user_id": user_id, "roles": sorted(roles)} for user_id, roles in members.items()]

    # --- 멤버십 관리 ---
    def add_member_role(self, caller: str, project_id: int, user_id: int, role: Any) -> Dict[str, Any]:
        """
        프로젝트 멤버에게 역할을 추가합니다. 이미 가진 역할이면 아무것도 바뀌지 않습니다.

        Raises:
            AccessDeniedError: 호출자가 Product Owner 또는 Scrum Master가 아닐 때.
            ProjectNotFoundError, UserNotFoundError: 대상이 존재하지 않을 때.
        """
        self._require_member_admin(caller, project_id)
        self._get_project(project_id)
        self._get_user(user_id)
        self.membership_store.add_role(project_id, user_id, role)
        return {"user_id": user_id, "roles": self._sorted_roles(project_id, user_id)}

    def remove_member_role(self, caller: str, project_id: int, user_id: int, role: Any) -> Dict[str, Any]:
        self._require_member_admin(caller, project_id)
        self._get_project(project_id)
        self.membership_store.remove_role(project_id, user_id, role)
        return {"user_id": user_id, "roles": self._sorted_roles(project_id, user_id)}

    def replace_member_roles(self, caller: str, project_id: int, user_id: int, roles: Iterable[Any]) -> Dict[str, Any]:
        """
        멤버의 프로젝트 역할 전체를 교체합니다. 빈 역할 목록은 거부됩니다. (멤버 제외는 remove_member 사용)

        Raises:
            AccessDeniedError: 호출자가 Product Owner 또는 Scrum Master가 아닐 때.
            ValidationError: 역할 목록이 비어있을 때.
        """
        self._require_member_admin(caller, project_id)
        self._get_project(project_id)
        self._get_user(user_id)
        self.membership_store.replace_roles(project_id, user_id, roles)
        return {"user_id": user_id, "roles": self._sorted_roles(project_id, user_id)}

    def remove_member(self, caller: str, project_id: int, user_id: int) -> bool:
        self._require_member_admin(caller, project_id)
        self._get_project(project_id)
        self.membership_store.remove_all_roles(project_id, user_id)
        logger.info("Removed user %s from project %s", user_id, project_id)
        return True

    def join_project(self, caller: str, project_code: str, role: Any) -> Dict[str, Any]:
        """
        참여 코드로 프로젝트에 스스로 참여합니다. SYSTEM_ADMIN을 제외한 하나의 역할만 선택할 수 있습니다.

        Raises:
            AccessDeniedError: 알 수 없거나 비활성화된 호출자일 때.
            ProjectNotFoundError: 참여 코드에 해당하는 프로젝트가 없을 때.
        """
        user = self.authz.resolve_caller(caller)
        if user is None:
            raise AccessDeniedError("Unknown or inactive user.")
        selected = self.guard.check_registration_roles(role)
        project = self.project_repo.find_by_code(self.guard.check_text(project_code, "Project code"))
        if not project:
            raise ProjectNotFoundError(f"Project with code '{project_code}' not found.")
        self.membership_store.add_role(project.id, user.id, selected)
        return {"project_id": project.id, "user_id": user.id, "roles": self._sorted_roles(project.id, user.id)}

    def _sorted_roles(self, project_id: int, user_id: int) -> List[str]:
        return sorted(r.value for r in self.membership_store.roles_of(project_id, user_id))

    def delete_project(self, caller: str, project_id: int) -> bool:
        """
        프로젝트를 삭제합니다.
        사용자 스토리, 릴리스 계획, 멤버십, 프로젝트 순서로 하나의 트랜잭션 안에서 삭제합니다.

        Raises:
            AccessDeniedError: 호출자가 프로젝트의 Product Owner가 아닐 때.
            ProjectNotFoundError: 해당 ID의 프로젝트를 찾을 수 없을 때.
        """
        deny_unless(
            self.authz.has_role(caller, project_id, models.UserRole.PRODUCT_OWNER),
            "Only a Product Owner can delete the project."
        )
        project = self._get_project(project_id)
        with self.uow.atomic():
            self.story_repo.delete_by_project_id(project.id)
            self.release_plan_repo.delete_by_project_id(project.id)
            self.membership_store.purge_project(project.id)
            self.project_repo.delete(project)
        logger.info("Deleted project %s", project.project_key)
        return True
