# tests/services/test_user_story_service.py
import pytest
from unittest.mock import MagicMock

from agiletrack.services.user_story_service import UserStoryService
from agiletrack.services.authorization import AuthorizationEngine
from agiletrack.services.key_generator import IdentityKeyGenerator
from agiletrack.services.exceptions import (
    AccessDeniedError, ProjectNotFoundError, ReleasePlanNotFoundError, UserNotFoundError,
    UserStoryNotFoundError, ValidationError
)
from agiletrack.repositories.interfaces import (
    IUserRepository, IProjectRepository, IReleasePlanRepository, IUserStoryRepository
)
from agiletrack.database import models

PO = models.UserRole.PRODUCT_OWNER

# ===================================================================
#  Fixture 설정
# ===================================================================

@pytest.fixture
def mock_user_repo() -> MagicMock:
    return MagicMock(spec=IUserRepository)

@pytest.fixture
def mock_project_repo() -> MagicMock:
    repo = MagicMock(spec=IProjectRepository)
    repo.find_by_id.return_value = models.Project(id=7, name="Apollo", project_key="PROJ-007")
    return repo

@pytest.fixture
def mock_release_plan_repo() -> MagicMock:
    return MagicMock(spec=IReleasePlanRepository)

@pytest.fixture
def mock_story_repo() -> MagicMock:
    return MagicMock(spec=IUserStoryRepository)

@pytest.fixture
def mock_authz() -> MagicMock:
    authz = MagicMock(spec=AuthorizationEngine)
    authz.resolve_caller.return_value = models.User(id=2, username="bob", active=True)
    authz.is_member.return_value = True
    authz.has_role.return_value = True
    return authz

@pytest.fixture
def mock_key_generator() -> MagicMock:
    generator = MagicMock(spec=IdentityKeyGenerator)

    def _create_user_story(story, project_key):
        story.id = 15
        story.story_key = f"{project_key}-015"
        return story
    generator.create_user_story.side_effect = _create_user_story
    return generator

@pytest.fixture
def story_service(mock_user_repo, mock_project_repo, mock_release_plan_repo, mock_story_repo,
                  mock_authz, mock_key_generator, fake_uow) -> UserStoryService:
    return UserStoryService(mock_user_repo, mock_project_repo, mock_release_plan_repo, mock_story_repo,
                            mock_authz, mock_key_generator, fake_uow)

@pytest.fixture
def existing_story(mock_story_repo) -> models.UserStory:
    story = models.UserStory(
        id=15, story_key="PROJ-007-015", title="Login", description="As a user I can log in",
        project_id=7, status=models.StoryStatus.NEW, priority=models.StoryPriority.MEDIUM,
        is_mvp=False, sprint_ready=False, is_starred=False
    )
    mock_story_repo.find_by_id.return_value = story
    return story

# ===================================================================
#  생성 테스트
# ===================================================================
class TestCreate:
    def test_create_success(self, story_service, mock_key_generator, fake_uow):
        # === Act ===
        story = story_service.create("bob", 7, " Login ", "As a user I can log in", story_points=3, priority="high")

        # === Assert ===
        assert story["story_key"] == "PROJ-007-015"
        assert story["title"] == "Login"
        assert story["status"] == "NEW"
        assert story["priority"] == "HIGH"
        assert story["story_points"] == 3
        assert story["created_by_user_id"] == 2
        assert story["release_plan_id"] is None
        mock_key_generator.create_user_story.assert_called_once()
        assert fake_uow.commits == 1

    def test_create_requires_membership(self, story_service, mock_authz, mock_key_generator):
        mock_authz.is_member.return_value = False

        with pytest.raises(AccessDeniedError):
            story_service.create("carol", 7, "Login", "desc")
        mock_key_generator.create_user_story.assert_not_called()

    def test_create_in_unknown_project(self, story_service, mock_project_repo):
        mock_project_repo.find_by_id.return_value = None

        with pytest.raises(ProjectNotFoundError):
            story_service.create("root", 404, "Login", "desc")

    @pytest.mark.parametrize("title, description, points", [
        ("", "desc", None),
        ("Login", "  ", None),
        ("Login", "desc", -1),
        ("Login", "desc", "many"),
    ])
    def test_create_rejects_invalid_input(self, story_service, mock_key_generator, title, description, points):
        with pytest.raises(ValidationError):
            story_service.create("bob", 7, title, description, story_points=points)
        mock_key_generator.create_user_story.assert_not_called()

    @pytest.mark.parametrize("title, description", [(123, "desc"), ("Login", ["desc"]), ({"t": 1}, "desc")])
    def test_create_rejects_non_string_text(self, story_service, mock_key_generator, title, description):
        with pytest.raises(ValidationError, match="must be a string"):
            story_service.create("bob", 7, title, description)
        mock_key_generator.create_user_story.assert_not_called()

    def test_create_rejects_non_integer_assignee(self, story_service, mock_user_repo):
        with pytest.raises(ValidationError, match="Assignee"):
            story_service.create("bob", 7, "Login", "desc", assigned_to_user_id="bob")
        mock_user_repo.find_by_id.assert_not_called()

    def test_create_rejects_unknown_assignee(self, story_service, mock_user_repo):
        mock_user_repo.find_by_id.return_value = None

        with pytest.raises(UserNotFoundError):
            story_service.create("bob", 7, "Login", "desc", assigned_to_user_id=99)

    def test_create_with_release_plan_of_other_project_is_rejected(self, story_service, mock_release_plan_repo, mock_key_generator):
        mock_release_plan_repo.find_by_id.return_value = models.ReleasePlan(id=43, project_id=8)

        with pytest.raises(ValidationError, match="same project"):
            story_service.create("alice", 7, "Login", "desc", release_plan=43)
        mock_key_generator.create_user_story.assert_not_called()

    def test_create_with_release_plan_links_story(self, story_service, mock_release_plan_repo, mock_story_repo):
        mock_release_plan_repo.find_by_key.return_value = models.ReleasePlan(id=42, project_id=7)

        story = story_service.create("alice", 7, "Login", "desc", release_plan="PROJ-007-042")

        assert story["release_plan_id"] == 42
        mock_story_repo.save.assert_called_once()

# ===================================================================
#  조회 / 수정 테스트
# ===================================================================
class TestReadAndUpdate:
    def test_get_not_found(self, story_service, mock_story_repo):
        mock_story_repo.find_by_id.return_value = None

        with pytest.raises(UserStoryNotFoundError):
            story_service.get("bob", 99)

    def test_get_requires_membership_of_story_project(self, story_service, existing_story, mock_authz):
        mock_authz.is_member.return_value = False

        with pytest.raises(AccessDeniedError):
            story_service.get("carol", 15)
        mock_authz.is_member.assert_called_once_with("carol", 7)

    def test_list_for_user_collects_member_projects(self, story_service, mock_project_repo, mock_story_repo):
        mock_project_repo.list_by_member.return_value = [models.Project(id=7), models.Project(id=9)]
        mock_story_repo.list_by_project_id.side_effect = [
            [models.UserStory(id=15, project_id=7)], [models.UserStory(id=20, project_id=9)]
        ]

        stories = story_service.list_for_user("bob")

        assert [s["id"] for s in stories] == [15, 20]
        mock_story_repo.list_all.assert_not_called()

    def test_update_fields(self, story_service, existing_story, mock_story_repo):
        result = story_service.update("bob", 15, {"title": "Sign in", "priority": "critical"})

        assert result["title"] == "Sign in"
        assert existing_story.priority == models.StoryPriority.CRITICAL
        mock_story_repo.save.assert_called_once_with(existing_story)

    def test_update_rejects_non_string_title(self, story_service, existing_story, mock_story_repo):
        with pytest.raises(ValidationError, match="must be a string"):
            story_service.update("bob", 15, {"title": 42})
        assert existing_story.title == "Login"
        mock_story_repo.save.assert_not_called()

    def test_update_rejects_unknown_field(self, story_service, existing_story):
        with pytest.raises(ValidationError, match="Unknown"):
            story_service.update("bob", 15, {"release_plan_id": 42})

    def test_update_estimation(self, story_service, existing_story):
        result = story_service.update_estimation("bob", 15, story_points=5, business_value=80)

        assert result["story_points"] == 5
        assert result["business_value"] == 80

    def test_update_status(self, story_service, existing_story):
        assert story_service.update_status("bob", 15, "done")["status"] == "DONE"
        with pytest.raises(ValidationError):
            story_service.update_status("bob", 15, "ARCHIVED")

    def test_flags(self, story_service, existing_story):
        assert story_service.update_sprint_ready("bob", 15, True)["sprint_ready"] is True
        assert story_service.update_starred("bob", 15, True)["is_starred"] is True
        assert story_service.update_mvp("bob", 15, True)["is_mvp"] is True
        with pytest.raises(ValidationError):
            story_service.update_mvp("bob", 15, "yes")

    def test_delete(self, story_service, existing_story, mock_story_repo):
        assert story_service.delete("bob", 15) is True
        mock_story_repo.delete.assert_called_once_with(existing_story)

# ===================================================================
#  릴리스 계획 연결 테스트
# ===================================================================
class TestSetReleasePlan:
    def test_link_same_project(self, story_service, existing_story, mock_release_plan_repo, mock_authz):
        mock_release_plan_repo.find_by_id.return_value = models.ReleasePlan(id=42, project_id=7)

        result = story_service.set_release_plan("alice", 15, 42)

        assert result["release_plan_id"] == 42
        mock_authz.has_role.assert_called_once_with("alice", 7, PO)

    def test_link_other_project_is_rejected(self, story_service, existing_story, mock_release_plan_repo, mock_story_repo):
        mock_release_plan_repo.find_by_id.return_value = models.ReleasePlan(id=43, project_id=8)

        with pytest.raises(ValidationError):
            story_service.set_release_plan("alice", 15, 43)
        assert existing_story.release_plan_id is None
        mock_story_repo.save.assert_not_called()

    def test_unlink(self, story_service, existing_story):
        existing_story.release_plan_id = 42

        result = story_service.set_release_plan("alice", 15, None)

        assert result["release_plan_id"] is None

    def test_link_requires_product_owner(self, story_service, existing_story, mock_release_plan_repo, mock_authz):
        mock_release_plan_repo.find_by_id.return_value = models.ReleasePlan(id=42, project_id=7)
        mock_authz.has_role.return_value = False

        with pytest.raises(AccessDeniedError):
            story_service.set_release_plan("bob", 15, 42)

    def test_link_missing_plan(self, story_service, existing_story, mock_release_plan_repo):
        mock_release_plan_repo.find_by_id.return_value = None

        with pytest.raises(ReleasePlanNotFoundError):
            story_service.set_release_plan("alice", 15, 404)
