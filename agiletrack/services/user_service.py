import hashlib
import logging
from typing import Any, Dict, Iterable, List, Optional

from agiletrack.database import models
from agiletrack.repositories.interfaces import (
    IUserRepository, IProjectRepository, IReleasePlanRepository, IUserStoryRepository, IUnitOfWork
)
from agiletrack.services.authorization import AuthorizationEngine, deny_unless
from agiletrack.services.consistency import ConsistencyGuard
from agiletrack.services.membership_store import MembershipStore
from agiletrack.services.exceptions import (
    UserCreationError, UserNotFoundError, ProjectNotFoundError, ValidationError, AccessDeniedError
)

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode('utf-8')).hexdigest()


def _check_password(value: Any, label: str):
    # 공백도 비밀번호의 일부이므로 strip하지 않습니다.
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{label} must be a string.")


def user_to_dict(user: models.User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "full_name": user.full_name,
        "active": user.active is not False,
        "roles": sorted(role.value for role in user.system_roles),
    }


class UserService:
    """사용자 가입, 프로필, 시스템 전역 역할 관리 서비스를 제공합니다."""

    def __init__(self, user_repo: IUserRepository, project_repo: IProjectRepository,
                 release_plan_repo: IReleasePlanRepository, story_repo: IUserStoryRepository,
                 membership_store: MembershipStore, authz: AuthorizationEngine, uow: IUnitOfWork,
                 guard: ConsistencyGuard = None):
        """
        UserService를 초기화합니다.

        Args:
            user_repo: 사용자 데이터에 접근하기 위한 리포지토리.
            project_repo: 참여 코드로 프로젝트를 찾기 위한 리포지토리 (가입 시 프로젝트 참여용).
            release_plan_repo: 사용자 삭제 시 생성자 참조를 정리하기 위한 리포지토리.
            story_repo: 사용자 삭제 시 생성자/담당자 참조를 정리하기 위한 리포지토리.
            membership_store: 프로젝트 멤버십 관리 객체.
            authz: 권한 판단 엔진.
            uow: 트랜잭션 경계.
        """
        self.user_repo = user_repo
        self.project_repo = project_repo
        self.release_plan_repo = release_plan_repo
        self.story_repo = story_repo
        self.membership_store = membership_store
        self.authz = authz
        self.uow = uow
        self.guard = guard or ConsistencyGuard()

    def _get_caller(self, caller: str) -> models.User:
        user = self.authz.resolve_caller(caller)
        if user is None:
            raise AccessDeniedError("Unknown or inactive user.")
        return user

    def _get_user(self, user_id: int) -> models.User:
        user = self.user_repo.find_by_id(user_id)
        if not user:
            raise UserNotFoundError(f"User with id '{user_id}' not found.")
        return user

    def register(self, username: str, email: str, password: str, roles: Iterable[Any],
                 full_name: Optional[str] = None, project_code: Optional[str] = None) -> Dict[str, Any]:
        """
        새로운 사용자를 가입시킵니다. 비밀번호는 해시하여 저장합니다.

        가입 시에는 정확히 하나의 역할만 선택할 수 있으며, SYSTEM_ADMIN은 선택할 수 없습니다.
        project_code가 주어지면 선택한 역할로 해당 프로젝트에 바로 참여합니다.

        Raises:
            UserCreationError: 사용자 이름 또는 이메일이 이미 존재하거나 필수값이 없을 때.
            ValidationError: 역할 선택 규칙에 위배될 때.
            ProjectNotFoundError: 참여 코드에 해당하는 프로젝트가 없을 때.
        """
        username = self.guard.check_text(username, "Username", required=False)
        email = self.guard.check_text(email, "Email", required=False)
        _check_password(password, "Password")
        full_name = self.guard.check_text(full_name, "Full name", required=False)
        project_code = self.guard.check_text(project_code, "Project code", required=False)
        if not username:
            raise UserCreationError("Username is required.")
        if not email:
            raise UserCreationError("Email is required.")
        if not password:
            raise UserCreationError("Password is required.")
        email = email.lower()

        if self.user_repo.find_by_username(username):
            raise UserCreationError(f"User with username '{username}' already exists.")
        if self.user_repo.find_by_email(email):
            raise UserCreationError(f"User with email '{email}' already exists.")
        role = self.guard.check_registration_roles(roles)

        project = None
        if project_code:
            project = self.project_repo.find_by_code(project_code)
            if not project:
                raise ProjectNotFoundError(f"Project with code '{project_code}' not found.")

        with self.uow.atomic():
            new_user = models.User(
                username=username, email=email, password_hash=hash_password(password),
                full_name=full_name, active=True
            )
            new_user.set_system_roles([role])
            created_user = self.user_repo.create(new_user)
            if project:
                self.membership_store.add_role(project.id, created_user.id, role)
        logger.info("Registered user %s as %s", created_user.username, role.value)
        return user_to_dict(created_user)

    def get_profile(self, caller: str) -> Dict[str, Any]:
        return user_to_dict(self._get_caller(caller))

    def update_profile(self, caller: str, full_name: Optional[str] = None, email: Optional[str] = None) -> Dict[str, Any]:
        """
        호출자 본인의 프로필을 수정합니다. 이메일은 다른 사용자와 중복될 수 없습니다.

        Raises:
            ValidationError: 다른 사용자가 이미 사용 중인 이메일일 때.
        """
        user = self._get_caller(caller)
        full_name = self.guard.check_text(full_name, "Full name", required=False)
        email = self.guard.check_text(email, "Email", required=False)
        with self.uow.atomic():
            if full_name is not None:
                user.full_name = full_name
            if email is not None:
                email = email.lower()
                existing = self.user_repo.find_by_email(email)
                if existing and existing.id != user.id:
                    raise ValidationError(f"User with email '{email}' already exists.")
                user.email = email
            self.user_repo.save(user)
        return user_to_dict(user)

    def change_password(self, caller: str, current_password: str, new_password: str) -> bool:
        """
        호출자 본인의 비밀번호를 변경합니다.

        Raises:
            ValidationError: 현재 비밀번호가 틀렸거나, 새 비밀번호가 기존과 같을 때.
        """
        user = self._get_caller(caller)
        _check_password(current_password, "Current password")
        _check_password(new_password, "New password")
        if not current_password or user.password_hash != hash_password(current_password):
            raise ValidationError("Current password is incorrect.")
        if not new_password:
            raise ValidationError("New password is required.")
        if current_password == new_password:
            raise ValidationError("New password must be different from the current password.")
        with self.uow.atomic():
            user.password_hash = hash_password(new_password)
            self.user_repo.save(user)
        return True

    # --- 시스템 관리자 전용 ---
    def list_users(self, caller: str) -> List[Dict[str, Any]]:
        """모든 사용자의 목록을 조회합니다. (비밀번호 제외)"""
        deny_unless(self.authz.is_system_admin(caller), "Only system administrators can list users.")
        return [user_to_dict(u) for u in self.user_repo.list_all()]

    def update_system_roles(self, caller: str, user_id: int, roles: Iterable[Any]) -> Dict[str, Any]:
        """
        사용자의 시스템 전역 역할을 교체합니다. 가입 때와 달리 여러 역할을 지정할 수 있습니다.

        Raises:
            AccessDeniedError: 호출자가 시스템 관리자가 아닐 때.
            UserNotFoundError: 해당 ID의 사용자를 찾을 수 없을 때.
            ValidationError: 역할 목록이 비어있을 때.
        """
        deny_unless(self.authz.is_system_admin(caller), "Only system administrators can change user roles.")
        user = self._get_user(user_id)
        new_roles = self.guard.check_role_replacement(roles)
        with self.uow.atomic():
            user.set_system_roles(new_roles)
            self.user_repo.save(user)
        logger.info("System roles of user %s set to %s", user.username, sorted(r.value for r in new_roles))
        return user_to_dict(user)

    def deactivate_user(self, caller: str, user_id: int) -> Dict[str, Any]:
        deny_unless(self.authz.is_system_admin(caller), "Only system administrators can deactivate users.")
        user = self._get_user(user_id)
        with self.uow.atomic():
            user.active = False
            self.user_repo.save(user)
        return user_to_dict(user)

    def delete_user(self, caller: str, user_id: int) -> bool:
        """
        사용자를 삭제합니다.
        모든 프로젝트 멤버십을 먼저 삭제하고, 릴리스 계획과 스토리의 생성자/담당자 참조는 NULL로 바꿉니다.

        Raises:
            AccessDeniedError: 호출자가 시스템 관리자가 아닐 때.
            UserNotFoundError: 해당 ID의 사용자를 찾을 수 없을 때.
        """
        deny_unless(self.authz.is_system_admin(caller), "Only system administrators can delete users.")
        user = self._get_user(user_id)
        with self.uow.atomic():
            self.membership_store.purge_user(user.id)
            self.story_repo.clear_user_references(user.id)
            self.release_plan_repo.clear_creator(user.id)
            self.user_repo.delete(user)
        logger.info("Deleted user %s", user.username)
        return True
