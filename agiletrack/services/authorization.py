import logging
from typing import Any, Iterable, Optional

from agiletrack.database import models
from agiletrack.repositories.interfaces import IUserRepository
from agiletrack.services.consistency import ConsistencyGuard
from agiletrack.services.exceptions import AccessDeniedError
from agiletrack.services.membership_store import MembershipStore

logger = logging.getLogger(__name__)


def deny_unless(allowed: bool, message: str = "Access denied."):
    """권한 판단 결과가 False이면 AccessDeniedError를 발생시킵니다."""
    if not allowed:
        logger.warning("Access denied: %s", message)
        raise AccessDeniedError(message)


class AuthorizationEngine:
    """
    프로젝트 범위 권한 판단을 제공합니다.

    호출자의 시스템 전역 역할에 SYSTEM_ADMIN이 있으면 멤버십 조회 없이 즉시 허용하고,
    그렇지 않으면 MembershipStore에서 해당 프로젝트의 역할을 조회해 판단합니다.
    멤버십은 요청 사이에 바뀔 수 있으므로 어떤 판단도 캐시하지 않습니다.
    알 수 없거나 비활성화된 호출자는 예외가 아닌 False로 판단됩니다.
    """

    def __init__(self, user_repo: IUserRepository, membership_store: MembershipStore):
        self.user_repo = user_repo
        self.membership_store = membership_store

    def resolve_caller(self, caller: str) -> Optional[models.User]:
        """
        사용자 이름으로 활성 사용자를 찾습니다.
        비활성화된 사용자는 SYSTEM_ADMIN이라도 None으로 처리되므로, 비활성 관리자는 어떤 권한도 갖지 못합니다.
        """
        if not caller:
            return None
        user = self.user_repo.find_by_username(caller)
        if user is None or user.active is False:
            return None
        return user

    def is_system_admin(self, caller: str) -> bool:
        user = self.resolve_caller(caller)
        return user is not None and user.is_system_admin

    def has_role(self, caller: str, project_id: int, role: Any) -> bool:
        return self.has_any_role(caller, project_id, [role])

    def has_any_role(self, caller: str, project_id: int, roles: Iterable[Any]) -> bool:
        user = self.resolve_caller(caller)
        if user is None:
            return False
        if user.is_system_admin:
            return True
        wanted = {ConsistencyGuard.coerce_role(r) for r in roles}
        return bool(wanted & self.membership_store.roles_of(project_id, user.id))

    def is_member(self, caller: str, project_id: int) -> bool:
        user = self.resolve_caller(caller)
        if user is None:
            return False
        if user.is_system_admin:
            return True
        return self.membership_store.is_member(project_id, user.id)
