# tests/services/test_authorization.py
import pytest
from unittest.mock import MagicMock

from agiletrack.services.authorization import AuthorizationEngine, deny_unless
from agiletrack.services.membership_store import MembershipStore
from agiletrack.services.exceptions import AccessDeniedError
from agiletrack.repositories.interfaces import IUserRepository
from agiletrack.database import models

PO = models.UserRole.PRODUCT_OWNER
SM = models.UserRole.SCRUM_MASTER
DEV = models.UserRole.DEVELOPER
ADMIN = models.UserRole.SYSTEM_ADMIN


def make_user(user_id, username, roles=(), active=True) -> models.User:
    user = models.User(id=user_id, username=username, active=active)
    user.set_system_roles(roles)
    return user

# ===================================================================
#  Fixture 설정
# ===================================================================

@pytest.fixture
def mock_user_repo() -> MagicMock:
    return MagicMock(spec=IUserRepository)

@pytest.fixture
def mock_membership_store() -> MagicMock:
    return MagicMock(spec=MembershipStore)

@pytest.fixture
def authz(mock_user_repo: MagicMock, mock_membership_store: MagicMock) -> AuthorizationEngine:
    return AuthorizationEngine(mock_user_repo, mock_membership_store)

# ===================================================================
#  권한 판단 테스트
# ===================================================================
class TestHasRole:
    def test_system_admin_overrides_without_membership_lookup(self, authz, mock_user_repo, mock_membership_store):
        """SYSTEM_ADMIN은 멤버십이 없어도 모든 프로젝트에서 허용되며, 멤버십을 조회하지 않습니다."""
        # === Arrange ===
        mock_user_repo.find_by_username.return_value = make_user(1, "root", [ADMIN])

        # === Act & Assert ===
        assert authz.has_role("root", 99, PO) is True
        assert authz.has_any_role("root", 99, [SM]) is True
        assert authz.is_member("root", 99) is True
        mock_membership_store.roles_of.assert_not_called()
        mock_membership_store.is_member.assert_not_called()

    def test_member_with_matching_role(self, authz, mock_user_repo, mock_membership_store):
        # === Arrange ===
        mock_user_repo.find_by_username.return_value = make_user(2, "alice", [PO])
        mock_membership_store.roles_of.return_value = {PO}

        # === Act & Assert ===
        assert authz.has_role("alice", 7, PO) is True
        assert authz.has_role("alice", 7, DEV) is False
        mock_membership_store.roles_of.assert_called_with(7, 2)

    def test_system_role_alone_does_not_grant_project_role(self, authz, mock_user_repo, mock_membership_store):
        """시스템 전역 역할이 PRODUCT_OWNER여도 해당 프로젝트의 멤버십이 없으면 거부됩니다."""
        # === Arrange ===
        mock_user_repo.find_by_username.return_value = make_user(2, "alice", [PO])
        mock_membership_store.roles_of.return_value = set()

        # === Act & Assert ===
        assert authz.has_role("alice", 8, PO) is False

    def test_has_any_role_accepts_role_names(self, authz, mock_user_repo, mock_membership_store):
        # === Arrange ===
        mock_user_repo.find_by_username.return_value = make_user(3, "sam", [SM])
        mock_membership_store.roles_of.return_value = {SM}

        # === Act & Assert ===
        assert authz.has_any_role("sam", 7, ["product_owner", "SCRUM_MASTER"]) is True
        assert authz.has_any_role("sam", 7, [PO, DEV]) is False

    def test_unknown_caller_is_denied_without_error(self, authz, mock_user_repo, mock_membership_store):
        """알 수 없는 호출자는 예외 없이 False로 판단됩니다."""
        # === Arrange ===
        mock_user_repo.find_by_username.return_value = None

        # === Act & Assert ===
        assert authz.has_role("ghost", 7, PO) is False
        assert authz.is_member("ghost", 7) is False
        assert authz.is_system_admin("ghost") is False
        mock_membership_store.roles_of.assert_not_called()

    def test_empty_caller_is_denied(self, authz, mock_user_repo):
        assert authz.has_role("", 7, PO) is False
        assert authz.has_role(None, 7, PO) is False
        mock_user_repo.find_by_username.assert_not_called()

    def test_inactive_admin_is_denied(self, authz, mock_user_repo):
        """비활성화된 사용자는 SYSTEM_ADMIN이라도 거부됩니다."""
        # === Arrange ===
        mock_user_repo.find_by_username.return_value = make_user(1, "root", [ADMIN], active=False)

        # === Act & Assert ===
        assert authz.has_role("root", 7, PO) is False
        assert authz.is_system_admin("root") is False

    def test_membership_changes_are_seen_immediately(self, authz, mock_user_repo, mock_membership_store):
        """판단 결과를 캐시하지 않으므로, 역할이 회수되면 바로 다음 호출부터 거부됩니다."""
        # === Arrange ===
        mock_user_repo.find_by_username.return_value = make_user(2, "alice", [PO])
        mock_membership_store.roles_of.side_effect = [{PO}, set()]

        # === Act & Assert ===
        assert authz.has_role("alice", 7, PO) is True
        assert authz.has_role("alice", 7, PO) is False
        assert mock_membership_store.roles_of.call_count == 2


class TestIsMember:
    def test_is_member_delegates_to_store(self, authz, mock_user_repo, mock_membership_store):
        # === Arrange ===
        mock_user_repo.find_by_username.return_value = make_user(4, "bob", [DEV])
        mock_membership_store.is_member.return_value = True

        # === Act & Assert ===
        assert authz.is_member("bob", 7) is True
        mock_membership_store.is_member.assert_called_once_with(7, 4)


def test_deny_unless_raises_access_denied():
    with pytest.raises(AccessDeniedError, match="Only a Product Owner"):
        deny_unless(False, "Only a Product Owner can do this.")
    # 허용이면 아무 일도 일어나지 않음
    deny_unless(True)
