# tests/services/test_release_plan_service.py
import pytest
from datetime import date
from unittest.mock import MagicMock

from agiletrack.services.release_plan_service import ReleasePlanService, resolve_release_plan
from agiletrack.services.user_story_service import UserStoryService
from agiletrack.services.authorization import AuthorizationEngine
from agiletrack.services.key_generator import IdentityKeyGenerator
from agiletrack.services.exceptions import (
    AccessDeniedError, ProjectNotFoundError, ReleasePlanNotFoundError, UserStoryNotFoundError, ValidationError
)
from agiletrack.repositories.interfaces import (
    IUserRepository, IProjectRepository, IReleasePlanRepository, IUserStoryRepository
)
from agiletrack.database import models

PO = models.UserRole.PRODUCT_OWNER


def make_plan(plan_id=42, project_id=7, **kwargs) -> models.ReleasePlan:
    values = dict(
        name="R1", release_key=f"PROJ-00{project_id}-0{plan_id}", start_date=date(2024, 1, 1),
        target_date=date(2024, 3, 1), status=models.ReleaseStatus.PLANNED,
    )
    values.update(kwargs)
    return models.ReleasePlan(id=plan_id, project_id=project_id, **values)

# ===================================================================
#  Fixture 설정
# ===================================================================

@pytest.fixture
def mock_project_repo() -> MagicMock:
    repo = MagicMock(spec=IProjectRepository)
    repo.find_by_id.return_value = models.Project(id=7, name="Apollo", project_key="PROJ-007")
    return repo

@pytest.fixture
def mock_release_plan_repo() -> MagicMock:
    repo = MagicMock(spec=IReleasePlanRepository)
    repo.count_stories.return_value = 0
    return repo

@pytest.fixture
def mock_story_repo() -> MagicMock:
    return MagicMock(spec=IUserStoryRepository)

@pytest.fixture
def mock_authz() -> MagicMock:
    authz = MagicMock(spec=AuthorizationEngine)
    authz.resolve_caller.return_value = models.User(id=1, username="alice", active=True)
    authz.has_role.return_value = True
    authz.is_member.return_value = True
    return authz

@pytest.fixture
def mock_key_generator() -> MagicMock:
    generator = MagicMock(spec=IdentityKeyGenerator)

    def _create_release_plan(plan, project_key):
        plan.id = 42
        plan.release_key = f"{project_key}-042"
        return plan
    generator.create_release_plan.side_effect = _create_release_plan
    return generator

@pytest.fixture
def release_plan_service(mock_project_repo, mock_release_plan_repo, mock_story_repo,
                         mock_authz, mock_key_generator, fake_uow) -> ReleasePlanService:
    return ReleasePlanService(mock_project_repo, mock_release_plan_repo, mock_story_repo,
                              mock_authz, mock_key_generator, fake_uow)

# ===================================================================
#  생성 / 수정 / 삭제 테스트
# ===================================================================
class TestCreate:
    def test_create_success(self, release_plan_service, mock_key_generator, mock_authz):
        # === Act ===
        plan = release_plan_service.create("alice", 7, "R1", "2024-01-01", "2024-03-01", goals="Ship it")

        # === Assert ===
        assert plan["release_key"] == "PROJ-007-042"
        assert plan["start_date"] == "2024-01-01"
        assert plan["status"] == "PLANNED"
        assert plan["created_by_user_id"] == 1
        assert plan["user_story_count"] == 0
        mock_authz.has_role.assert_called_once_with("alice", 7, PO)
        mock_key_generator.create_release_plan.assert_called_once()

    def test_create_requires_product_owner(self, release_plan_service, mock_authz, mock_key_generator):
        mock_authz.has_role.return_value = False

        with pytest.raises(AccessDeniedError):
            release_plan_service.create("bob", 7, "R1", "2024-01-01", "2024-03-01")
        mock_key_generator.create_release_plan.assert_not_called()

    def test_create_rejects_target_before_start(self, release_plan_service, mock_key_generator):
        with pytest.raises(ValidationError):
            release_plan_service.create("alice", 7, "R1", "2024-03-01", "2024-01-01")
        mock_key_generator.create_release_plan.assert_not_called()

    def test_create_rejects_blank_name(self, release_plan_service):
        with pytest.raises(ValidationError):
            release_plan_service.create("alice", 7, "  ", "2024-01-01", "2024-03-01")

    def test_create_rejects_non_string_name(self, release_plan_service, mock_key_generator):
        with pytest.raises(ValidationError, match="must be a string"):
            release_plan_service.create("alice", 7, 5, "2024-01-01", "2024-03-01")
        mock_key_generator.create_release_plan.assert_not_called()

    def test_create_in_unknown_project(self, release_plan_service, mock_project_repo):
        mock_project_repo.find_by_id.return_value = None

        with pytest.raises(ProjectNotFoundError):
            release_plan_service.create("root", 404, "R1", "2024-01-01", "2024-03-01")


class TestUpdate:
    def test_update_validates_merged_dates(self, release_plan_service, mock_release_plan_repo):
        """날짜 하나만 바꿔도 기존 값과 병합한 최종 값으로 검사합니다."""
        # === Arrange ===
        mock_release_plan_repo.find_by_id.return_value = make_plan(start_date=date(2024, 1, 1), target_date=date(2024, 3, 1))

        # === Act & Assert ===
        with pytest.raises(ValidationError):
            release_plan_service.update("alice", 42, {"start_date": "2024-04-01"})
        mock_release_plan_repo.save.assert_not_called()

    def test_update_success(self, release_plan_service, mock_release_plan_repo, fake_uow):
        plan = make_plan()
        mock_release_plan_repo.find_by_id.return_value = plan

        result = release_plan_service.update(
            "alice", 42, {"name": "R1.1", "target_date": "2024-05-01", "status": "in_progress"}
        )

        assert result["name"] == "R1.1"
        assert result["target_date"] == "2024-05-01"
        assert plan.status == models.ReleaseStatus.IN_PROGRESS
        mock_release_plan_repo.save.assert_called_once_with(plan)
        assert fake_uow.commits == 1

    def test_update_rejects_unknown_fields_and_blank_name(self, release_plan_service, mock_release_plan_repo):
        mock_release_plan_repo.find_by_id.return_value = make_plan()

        with pytest.raises(ValidationError, match="Unknown"):
            release_plan_service.update("alice", 42, {"project_id": 8})
        with pytest.raises(ValidationError):
            release_plan_service.update("alice", 42, {"name": ""})

    @pytest.mark.parametrize("changes", [{"name": 5}, {"description": 12}, {"goals": ["ship"]}])
    def test_update_rejects_non_string_text(self, release_plan_service, mock_release_plan_repo, changes):
        mock_release_plan_repo.find_by_id.return_value = make_plan()

        with pytest.raises(ValidationError, match="must be a string"):
            release_plan_service.update("alice", 42, changes)
        mock_release_plan_repo.save.assert_not_called()

    def test_update_not_found(self, release_plan_service, mock_release_plan_repo):
        mock_release_plan_repo.find_by_id.return_value = None

        with pytest.raises(ReleasePlanNotFoundError):
            release_plan_service.update("alice", 42, {"name": "X"})


def test_delete_unlinks_stories(release_plan_service, mock_release_plan_repo, mock_story_repo, fake_uow):
    """릴리스 계획을 삭제하면 스토리는 지우지 않고 연결만 해제합니다."""
    plan = make_plan()
    mock_release_plan_repo.find_by_id.return_value = plan
    mock_story_repo.unlink_release_plan.return_value = 2

    assert release_plan_service.delete("alice", 42) is True
    mock_story_repo.unlink_release_plan.assert_called_once_with(42)
    mock_release_plan_repo.delete.assert_called_once_with(plan)
    mock_story_repo.delete_by_project_id.assert_not_called()
    assert fake_uow.commits == 1

# ===================================================================
#  스토리 연결 테스트
# ===================================================================
class TestStoryLinking:
    def test_assign_by_key(self, release_plan_service, mock_release_plan_repo, mock_story_repo):
        # === Arrange ===
        plan = make_plan()
        story = models.UserStory(id=15, project_id=7, story_key="PROJ-007-015")
        mock_release_plan_repo.find_by_key.return_value = plan
        mock_story_repo.find_by_id.return_value = story
        mock_release_plan_repo.count_stories.return_value = 1

        # === Act ===
        result = release_plan_service.assign_user_story("alice", "PROJ-007-042", 15)

        # === Assert ===
        assert story.release_plan_id == 42
        assert result["user_story_count"] == 1
        mock_release_plan_repo.find_by_key.assert_called_once_with("PROJ-007-042")
        mock_story_repo.save.assert_called_once_with(story)

    def test_assign_rejects_cross_project_story(self, release_plan_service, mock_release_plan_repo, mock_story_repo):
        """다른 프로젝트의 스토리는 연결할 수 없으며, 스토리는 변경되지 않습니다."""
        mock_release_plan_repo.find_by_id.return_value = make_plan()
        story = models.UserStory(id=16, project_id=8)
        mock_story_repo.find_by_id.return_value = story

        with pytest.raises(ValidationError, match="same project"):
            release_plan_service.assign_user_story("root", 42, 16)
        assert story.release_plan_id is None
        mock_story_repo.save.assert_not_called()

    def test_assign_requires_product_owner(self, release_plan_service, mock_release_plan_repo, mock_story_repo, mock_authz):
        mock_release_plan_repo.find_by_id.return_value = make_plan()
        mock_story_repo.find_by_id.return_value = models.UserStory(id=15, project_id=7)
        mock_authz.has_role.return_value = False

        with pytest.raises(AccessDeniedError):
            release_plan_service.assign_user_story("bob", 42, 15)
        mock_story_repo.save.assert_not_called()

    def test_assign_missing_story(self, release_plan_service, mock_release_plan_repo, mock_story_repo):
        mock_release_plan_repo.find_by_id.return_value = make_plan()
        mock_story_repo.find_by_id.return_value = None

        with pytest.raises(UserStoryNotFoundError):
            release_plan_service.assign_user_story("alice", 42, 99)

    def test_unassign_requires_current_link(self, release_plan_service, mock_release_plan_repo, mock_story_repo):
        mock_release_plan_repo.find_by_id.return_value = make_plan()
        mock_story_repo.find_by_id.return_value = models.UserStory(id=15, project_id=7, release_plan_id=None)

        with pytest.raises(ValidationError):
            release_plan_service.unassign_user_story("alice", 42, 15)

    def test_unassign_success(self, release_plan_service, mock_release_plan_repo, mock_story_repo):
        mock_release_plan_repo.find_by_id.return_value = make_plan()
        story = models.UserStory(id=15, project_id=7, release_plan_id=42)
        mock_story_repo.find_by_id.return_value = story

        release_plan_service.unassign_user_story("alice", 42, 15)

        assert story.release_plan_id is None


def test_resolve_release_plan_by_id_or_key():
    repo = MagicMock(spec=IReleasePlanRepository)
    repo.find_by_id.return_value = make_plan()
    repo.find_by_key.return_value = None

    assert resolve_release_plan(repo, "42").id == 42
    repo.find_by_id.assert_called_once_with(42)
    with pytest.raises(ReleasePlanNotFoundError):
        resolve_release_plan(repo, "PROJ-007-999")

# ===================================================================
#  조회 테스트
# ===================================================================
class TestQueries:
    def test_get_requires_membership(self, release_plan_service, mock_release_plan_repo, mock_authz):
        mock_release_plan_repo.find_by_id.return_value = make_plan()
        mock_authz.is_member.return_value = False

        with pytest.raises(AccessDeniedError):
            release_plan_service.get("carol", 42)
        mock_authz.is_member.assert_called_once_with("carol", 7)

    def test_list_by_status_filters_to_member_projects(self, release_plan_service, mock_release_plan_repo, mock_project_repo):
        mock_release_plan_repo.list_by_status.return_value = [make_plan(42, 7), make_plan(43, 8)]
        mock_project_repo.list_by_member.return_value = [models.Project(id=7, name="Apollo")]

        plans = release_plan_service.list_by_status("alice", "planned")

        assert [p["id"] for p in plans] == [42]
        mock_release_plan_repo.list_by_status.assert_called_once_with(models.ReleaseStatus.PLANNED)

    def test_list_by_project(self, release_plan_service, mock_release_plan_repo):
        mock_release_plan_repo.list_by_project_id.return_value = [make_plan(42, 7)]

        plans = release_plan_service.list_by_project("alice", 7)

        assert plans[0]["release_key"] == "PROJ-007-042"

# ===================================================================
#  전체 흐름 시나리오 (실제 키 발급기 사용)
# ===================================================================
class TestKeyScenario:
    def test_project_story_and_plan_keys(self, mock_authz, fake_uow):
        """
        프로젝트 ID 7 → 'PROJ-007', 스토리 ID 15 → 'PROJ-007-015', 릴리스 계획 ID 42 → 'PROJ-007-042'.
        같은 프로젝트의 스토리는 연결되고, 다른 프로젝트(ID 8)의 스토리는 거부됩니다.
        """
        # === Arrange ===
        user_repo = MagicMock(spec=IUserRepository)
        project_repo = MagicMock(spec=IProjectRepository)
        plan_repo = MagicMock(spec=IReleasePlanRepository)
        story_repo = MagicMock(spec=IUserStoryRepository)
        for repo in (project_repo, plan_repo, story_repo):
            repo.save.side_effect = lambda entity: entity

        def assign_id(new_id):
            def _create(entity):
                entity.id = new_id
                return entity
            return _create
        project_repo.create.side_effect = assign_id(7)
        story_repo.create.side_effect = assign_id(15)
        plan_repo.create.side_effect = assign_id(42)
        plan_repo.count_stories.return_value = 1

        key_generator = IdentityKeyGenerator(project_repo, plan_repo, story_repo, fake_uow)
        plans = ReleasePlanService(project_repo, plan_repo, story_repo, mock_authz, key_generator, fake_uow)
        stories = UserStoryService(user_repo, project_repo, plan_repo, story_repo, mock_authz, key_generator, fake_uow)

        # === Act ===
        project = key_generator.create_project(models.Project(name="Apollo"))
        project_repo.find_by_id.return_value = project
        story = stories.create("alice", 7, "Login", "As a user I can log in")
        plan = plans.create("alice", 7, "R1", date(2024, 1, 1), date(2024, 3, 1))

        stored_story = story_repo.create.call_args.args[0]
        stored_plan = plan_repo.create.call_args.args[0]
        story_repo.find_by_id.return_value = stored_story
        plan_repo.find_by_id.return_value = stored_plan
        linked = plans.assign_user_story("alice", 42, 15)

        # === Assert ===
        assert project.project_key == "PROJ-007"
        assert story["story_key"] == "PROJ-007-015"
        assert plan["release_key"] == "PROJ-007-042"
        assert stored_story.release_plan_id == 42
        assert linked["user_story_count"] == 1

        # 다른 프로젝트의 릴리스 계획에는 연결할 수 없고, 기존 연결은 그대로 유지
        plan_repo.find_by_id.return_value = models.ReleasePlan(id=99, project_id=8, release_key="PROJ-008-099")
        with pytest.raises(ValidationError):
            plans.assign_user_story("alice", 99, 15)
        assert stored_story.release_plan_id == 42
