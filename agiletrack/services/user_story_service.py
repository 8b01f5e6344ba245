import logging
from typing import Any, Dict, List, Optional, Union

from agiletrack.database import models
from agiletrack.repositories.interfaces import (
    IUserRepository, IProjectRepository, IReleasePlanRepository, IUserStoryRepository, IUnitOfWork
)
from agiletrack.services.authorization import AuthorizationEngine, deny_unless
from agiletrack.services.consistency import ConsistencyGuard
from agiletrack.services.key_generator import IdentityKeyGenerator
from agiletrack.services.release_plan_service import iso, resolve_release_plan
from agiletrack.services.exceptions import (
    ProjectNotFoundError, UserNotFoundError, UserStoryNotFoundError, ValidationError, AccessDeniedError
)

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("title", "description", "acceptance_criteria", "priority", "assigned_to_user_id")


def story_to_dict(story: models.UserStory) -> Dict[str, Any]:
    return {
        "id": story.id,
        "story_key": story.story_key,
        "title": story.title,
        "description": story.description,
        "acceptance_criteria": story.acceptance_criteria,
        "story_points": story.story_points,
        "business_value": story.business_value,
        "is_mvp": bool(story.is_mvp),
        "status": story.status.value if story.status else None,
        "priority": story.priority.value if story.priority else None,
        "sprint_ready": bool(story.sprint_ready),
        "is_starred": bool(story.is_starred),
        "project_id": story.project_id,
        "release_plan_id": story.release_plan_id,
        "created_by_user_id": story.created_by_user_id,
        "assigned_to_user_id": story.assigned_to_user_id,
        "created_at": iso(story.created_at),
        "updated_at": iso(story.updated_at),
    }


def _check_estimate(value: Any, label: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a non-negative integer.")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a non-negative integer.") from None
    if number < 0:
        raise ValidationError(f"{label} must be a non-negative integer.")
    return number


def _check_flag(value: Any, label: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{label} must be true or false.")
    return value


class UserStoryService:
    """프로젝트 백로그의 사용자 스토리를 관리하는 서비스를 제공합니다."""

    def __init__(self, user_repo: IUserRepository, project_repo: IProjectRepository,
                 release_plan_repo: IReleasePlanRepository, story_repo: IUserStoryRepository,
                 authz: AuthorizationEngine, key_generator: IdentityKeyGenerator, uow: IUnitOfWork,
                 guard: ConsistencyGuard = None):
        """
        UserStoryService를 초기화합니다.

        Args:
            user_repo: 담당자 지정 시 사용자 존재 여부를 확인하기 위한 리포지토리.
            project_repo: 프로젝트 데이터에 접근하기 위한 리포지토리.
            release_plan_repo: 스토리를 연결할 릴리스 계획을 찾기 위한 리포지토리.
            story_repo: 사용자 스토리 데이터에 접근하기 위한 리포지토리.
            authz: 권한 판단 엔진.
            key_generator: 스토리 키 발급기.
            uow: 트랜잭션 경계.
        """
        self.user_repo = user_repo
        self.project_repo = project_repo
        self.release_plan_repo = release_plan_repo
        self.story_repo = story_repo
        self.authz = authz
        self.key_generator = key_generator
        self.uow = uow
        self.guard = guard or ConsistencyGuard()

    def _get_story(self, story_id: int) -> models.UserStory:
        story = self.story_repo.find_by_id(story_id)
        if not story:
            raise UserStoryNotFoundError(f"User story with id '{story_id}' not found.")
        return story

    def _get_story_for_member(self, caller: str, story_id: int) -> models.UserStory:
        story = self._get_story(story_id)
        deny_unless(self.authz.is_member(caller, story.project_id), "Only project members can access this user story.")
        return story

    def _check_assignee(self, user_id: Any):
        if user_id is not None and (isinstance(user_id, bool) or not isinstance(user_id, int)):
            raise ValidationError("Assignee must be a user ID.")
        if user_id is not None and not self.user_repo.find_by_id(user_id):
            raise UserNotFoundError(f"User with id '{user_id}' not found.")

    def create(self, caller: str, project_id: int, title: str, description: str,
               acceptance_criteria: Optional[str] = None, story_points: Any = None,
               business_value: Any = None, priority: Any = None, is_mvp: bool = False,
               assigned_to_user_id: Optional[int] = None,
               release_plan: Optional[Union[int, str]] = None) -> Dict[str, Any]:
        """
        새로운 사용자 스토리를 생성합니다. 스토리 키는 '<프로젝트 키>-<ID>' 형식으로 발급됩니다.

        Args:
            caller: 호출자 사용자 이름. 프로젝트 멤버여야 합니다.
            project_id: 스토리가 속할 프로젝트 ID.
            title: 제목.
            description: 설명.
            release_plan: 생성과 동시에 연결할 릴리스 계획의 ID 또는 키. 연결은 Product Owner만 할 수 있습니다.

        Returns:
            생성된 사용자 스토리 정보를 담은 딕셔너리.

        Raises:
            AccessDeniedError: 호출자가 프로젝트 멤버가 아니거나, Product Owner가 아닌데 릴리스 계획을 지정했을 때.
            ProjectNotFoundError: 해당 ID의 프로젝트를 찾을 수 없을 때.
            ValidationError: 필수값 누락, 잘못된 추정치, 다른 프로젝트의 릴리스 계획을 지정했을 때.
        """
        deny_unless(self.authz.is_member(caller, project_id), "Only project members can create user stories.")
        project = self.project_repo.find_by_id(project_id)
        if not project:
            raise ProjectNotFoundError(f"Project with id '{project_id}' not found.")
        title, description = self.guard.check_story_fields(title, description)
        acceptance_criteria = self.guard.check_text(acceptance_criteria, "Acceptance criteria", required=False)
        points = _check_estimate(story_points, "Story points")
        value = _check_estimate(business_value, "Business value")
        priority = self.guard.coerce_choice(models.StoryPriority, priority, "priority") or models.StoryPriority.MEDIUM
        self._check_assignee(assigned_to_user_id)

        creator = self.authz.resolve_caller(caller)
        story = models.UserStory(
            title=title, description=description, acceptance_criteria=acceptance_criteria,
            story_points=points, business_value=value, priority=priority, is_mvp=bool(is_mvp),
            status=models.StoryStatus.NEW, sprint_ready=False, is_starred=False,
            project_id=project.id, created_by_user_id=creator.id if creator else None,
            assigned_to_user_id=assigned_to_user_id
        )

        plan = None
        if release_plan is not None:
            plan = resolve_release_plan(self.release_plan_repo, release_plan)
            deny_unless(
                self.authz.has_role(caller, project.id, models.UserRole.PRODUCT_OWNER),
                "Only a Product Owner can link user stories to release plans."
            )
            self.guard.check_story_plan_affinity(story, plan)

        with self.uow.atomic():
            story = self.key_generator.create_user_story(story, project.project_key)
            if plan is not None:
                story.release_plan_id = plan.id
                self.story_repo.save(story)
        return story_to_dict(story)

    def get(self, caller: str, story_id: int) -> Dict[str, Any]:
        return story_to_dict(self._get_story_for_member(caller, story_id))

    def list_for_user(self, caller: str) -> List[Dict[str, Any]]:
        """호출자가 볼 수 있는 모든 사용자 스토리를 조회합니다. 시스템 관리자는 전체를 봅니다."""
        user = self.authz.resolve_caller(caller)
        if user is None:
            raise AccessDeniedError("Unknown or inactive user.")
        if user.is_system_admin:
            return [story_to_dict(s) for s in self.story_repo.list_all()]
        stories = []
        for project in self.project_repo.list_by_member(user.id):
            stories.extend(self.story_repo.list_by_project_id(project.id))
        return [story_to_dict(s) for s in stories]

    def list_by_project(self, caller: str, project_id: int) -> List[Dict[str, Any]]:
        deny_unless(self.authz.is_member(caller, project_id), "Only project members can view user stories.")
        if not self.project_repo.find_by_id(project_id):
            raise ProjectNotFoundError(f"Project with id '{project_id}' not found.")
        return [story_to_dict(s) for s in self.story_repo.list_by_project_id(project_id)]

    def update(self, caller: str, story_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        사용자 스토리의 내용을 수정합니다. changes에는 UPDATABLE_FIELDS의 키만 허용됩니다.

        Raises:
            UserStoryNotFoundError: 해당 ID의 스토리를 찾을 수 없을 때.
            AccessDeniedError: 호출자가 프로젝트 멤버가 아닐 때.
            ValidationError: 알 수 없는 필드, 빈 제목/설명일 때.
        """
        story = self._get_story_for_member(caller, story_id)
        unknown = sorted(set(changes) - set(UPDATABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Unknown user story fields: {', '.join(unknown)}.")
        title, description = self.guard.check_story_fields(
            changes.get("title", story.title), changes.get("description", story.description)
        )
        criteria = self.guard.check_text(changes.get("acceptance_criteria"), "Acceptance criteria", required=False)
        priority = self.guard.coerce_choice(models.StoryPriority, changes.get("priority"), "priority")
        if "assigned_to_user_id" in changes:
            self._check_assignee(changes["assigned_to_user_id"])

        with self.uow.atomic():
            story.title = title
            story.description = description
            if "acceptance_criteria" in changes:
                story.acceptance_criteria = criteria
            if priority is not None:
                story.priority = priority
            if "assigned_to_user_id" in changes:
                story.assigned_to_user_id = changes["assigned_to_user_id"]
            self.story_repo.save(story)
        return story_to_dict(story)

    def update_estimation(self, caller: str, story_id: int, story_points: Any = None, business_value: Any = None) -> Dict[str, Any]:
        story = self._get_story_for_member(caller, story_id)
        points = _check_estimate(story_points, "Story points")
        value = _check_estimate(business_value, "Business value")
        with self.uow.atomic():
            story.story_points = points
            story.business_value = value
            self.story_repo.save(story)
        return story_to_dict(story)

    def update_status(self, caller: str, story_id: int, status: Any) -> Dict[str, Any]:
        story = self._get_story_for_member(caller, story_id)
        status = self.guard.coerce_choice(models.StoryStatus, status, "status")
        if status is None:
            raise ValidationError("Status is required.")
        with self.uow.atomic():
            story.status = status
            self.story_repo.save(story)
        return story_to_dict(story)

    def update_sprint_ready(self, caller: str, story_id: int, sprint_ready: bool) -> Dict[str, Any]:
        return self._update_flag(caller, story_id, "sprint_ready", sprint_ready)

    def update_starred(self, caller: str, story_id: int, is_starred: bool) -> Dict[str, Any]:
        return self._update_flag(caller, story_id, "is_starred", is_starred)

    def update_mvp(self, caller: str, story_id: int, is_mvp: bool) -> Dict[str, Any]:
        return self._update_flag(caller, story_id, "is_mvp", is_mvp)

    def _update_flag(self, caller: str, story_id: int, attr: str, value: Any) -> Dict[str, Any]:
        story = self._get_story_for_member(caller, story_id)
        value = _check_flag(value, attr)
        with self.uow.atomic():
            setattr(story, attr, value)
            self.story_repo.save(story)
        return story_to_dict(story)

    def delete(self, caller: str, story_id: int) -> bool:
        story = self._get_story_for_member(caller, story_id)
        with self.uow.atomic():
            self.story_repo.delete(story)
        logger.info("Deleted user story %s", story.story_key)
        return True

    def set_release_plan(self, caller: str, story_id: int, plan_identifier: Optional[Union[int, str]]) -> Dict[str, Any]:
        """
        사용자 스토리의 릴리스 계획 연결을 변경하거나 해제합니다.

        Args:
            plan_identifier: 연결할 릴리스 계획의 ID 또는 키. None이면 연결을 해제합니다.

        Raises:
            UserStoryNotFoundError, ReleasePlanNotFoundError: 대상이 존재하지 않을 때.
            AccessDeniedError: 호출자가 프로젝트의 Product Owner가 아닐 때.
            ValidationError: 스토리와 릴리스 계획이 서로 다른 프로젝트에 속할 때.
        """
        story = self._get_story(story_id)
        plan = None
        if plan_identifier is not None:
            plan = resolve_release_plan(self.release_plan_repo, plan_identifier)
        deny_unless(
            self.authz.has_role(caller, story.project_id, models.UserRole.PRODUCT_OWNER),
            "Only a Product Owner can link user stories to release plans."
        )
        if plan is not None:
            self.guard.check_story_plan_affinity(story, plan)
        with self.uow.atomic():
            story.release_plan_id = plan.id if plan is not None else None
            self.story_repo.save(story)
        return story_to_dict(story)
