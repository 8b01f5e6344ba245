import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from agiletrack.database import models
from agiletrack.repositories.interfaces import (
    IProjectRepository, IReleasePlanRepository, IUserStoryRepository, IUnitOfWork
)
from agiletrack.services.authorization import AuthorizationEngine, deny_unless
from agiletrack.services.consistency import ConsistencyGuard
from agiletrack.services.key_generator import IdentityKeyGenerator
from agiletrack.services.exceptions import (
    ProjectNotFoundError, ReleasePlanNotFoundError, UserStoryNotFoundError, ValidationError, AccessDeniedError
)

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "description", "goals", "start_date", "target_date", "status")


def iso(value: Optional[Union[date, datetime]]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def resolve_release_plan(release_plan_repo: IReleasePlanRepository, identifier: Union[int, str]) -> models.ReleasePlan:
    """
    숫자 ID 또는 릴리스 키로 릴리스 계획을 찾습니다.
    정수이거나 숫자로만 된 문자열은 ID로, 그 외의 문자열은 릴리스 키로 취급합니다.

    Raises:
        ReleasePlanNotFoundError: 해당하는 릴리스 계획이 없을 때.
    """
    if isinstance(identifier, int) or (isinstance(identifier, str) and identifier.strip().isdigit()):
        plan = release_plan_repo.find_by_id(int(identifier))
    else:
        plan = release_plan_repo.find_by_key(str(identifier).strip())
    if not plan:
        raise ReleasePlanNotFoundError(f"Release plan '{identifier}' not found.")
    return plan


class ReleasePlanService:
    """프로젝트의 릴리스 계획과 사용자 스토리 연결을 관리하는 서비스를 제공합니다."""

    def __init__(self, project_repo: IProjectRepository, release_plan_repo: IReleasePlanRepository,
                 story_repo: IUserStoryRepository, authz: AuthorizationEngine,
                 key_generator: IdentityKeyGenerator, uow: IUnitOfWork, guard: ConsistencyGuard = None):
        self.project_repo = project_repo
        self.release_plan_repo = release_plan_repo
        self.story_repo = story_repo
        self.authz = authz
        self.key_generator = key_generator
        self.uow = uow
        self.guard = guard or ConsistencyGuard()

    def _to_dict(self, plan: models.ReleasePlan) -> Dict[str, Any]:
        return {
            "id": plan.id,
            "release_key": plan.release_key,
            "name": plan.name,
            "description": plan.description,
            "goals": plan.goals,
            "start_date": iso(plan.start_date),
            "target_date": iso(plan.target_date),
            "status": plan.status.value if plan.status else None,
            "project_id": plan.project_id,
            "created_by_user_id": plan.created_by_user_id,
            "user_story_count": self.release_plan_repo.count_stories(plan.id),
        }

    def _get_plan(self, plan_id: int) -> models.ReleasePlan:
        plan = self.release_plan_repo.find_by_id(plan_id)
        if not plan:
            raise ReleasePlanNotFoundError(f"Release plan with id '{plan_id}' not found.")
        return plan

    def _get_story(self, story_id: int) -> models.UserStory:
        story = self.story_repo.find_by_id(story_id)
        if not story:
            raise UserStoryNotFoundError(f"User story with id '{story_id}' not found.")
        return story

    def _require_product_owner(self, caller: str, project_id: int, action: str):
        deny_unless(
            self.authz.has_role(caller, project_id, models.UserRole.PRODUCT_OWNER),
            f"Only a Product Owner can {action}."
        )

    def create(self, caller: str, project_id: int, name: str, start_date: Any, target_date: Any,
               description: Optional[str] = None, goals: Optional[str] = None,
               status: Any = None) -> Dict[str, Any]:
        """
        새로운 릴리스 계획을 생성합니다. 릴리스 키는 '<프로젝트 키>-<ID>' 형식으로 발급됩니다.

        Args:
            caller: 호출자 사용자 이름.
            project_id: 릴리스 계획이 속할 프로젝트 ID.
            name: 릴리스 계획 이름.
            start_date: 시작일 (date 또는 'YYYY-MM-DD').
            target_date: 목표일 (date 또는 'YYYY-MM-DD'). 시작일보다 앞설 수 없습니다.
            description: 설명.
            goals: 릴리스 목표.
            status: 초기 상태. 없으면 PLANNED.

        Returns:
            생성된 릴리스 계획 정보를 담은 딕셔너리.

        Raises:
            AccessDeniedError: 호출자가 프로젝트의 Product Owner가 아닐 때.
            ProjectNotFoundError: 해당 ID의 프로젝트를 찾을 수 없을 때.
            ValidationError: 이름이 없거나 날짜 규칙에 위배될 때.
        """
        self._require_product_owner(caller, project_id, "create release plans")
        project = self.project_repo.find_by_id(project_id)
        if not project:
            raise ProjectNotFoundError(f"Project with id '{project_id}' not found.")
        name = self.guard.check_text(name, "Release plan name")
        description = self.guard.check_text(description, "Description", required=False)
        goals = self.guard.check_text(goals, "Goals", required=False)
        start = self.guard.coerce_date(start_date, "Start date")
        target = self.guard.coerce_date(target_date, "Target date")
        self.guard.check_release_dates(start, target)
        status = self.guard.coerce_choice(models.ReleaseStatus, status, "status") or models.ReleaseStatus.PLANNED

        creator = self.authz.resolve_caller(caller)
        plan = models.ReleasePlan(
            name=name, description=description, goals=goals,
            start_date=start, target_date=target, status=status, project_id=project.id,
            created_by_user_id=creator.id if creator else None
        )
        plan = self.key_generator.create_release_plan(plan, project.project_key)
        return self._to_dict(plan)

    def update(self, caller: str, plan_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        릴리스 계획을 수정합니다.
        날짜 규칙은 기존 값과 변경 값을 병합한 최종 값으로 검사합니다.

        Args:
            caller: 호출자 사용자 이름.
            plan_id: 수정할 릴리스 계획 ID.
            changes: 변경할 필드와 값. UPDATABLE_FIELDS에 없는 키는 거부됩니다.

        Raises:
            ReleasePlanNotFoundError: 해당 ID의 릴리스 계획을 찾을 수 없을 때.
            AccessDeniedError: 호출자가 프로젝트의 Product Owner가 아닐 때.
            ValidationError: 알 수 없는 필드, 빈 이름, 날짜 규칙 위반일 때.
        """
        plan = self._get_plan(plan_id)
        self._require_product_owner(caller, plan.project_id, "update release plans")

        unknown = sorted(set(changes) - set(UPDATABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Unknown release plan fields: {', '.join(unknown)}.")
        texts = {}
        if "name" in changes:
            texts["name"] = self.guard.check_text(changes["name"], "Release plan name")
        for field, label in (("description", "Description"), ("goals", "Goals")):
            if field in changes:
                texts[field] = self.guard.check_text(changes[field], label, required=False)

        start = self.guard.coerce_date(changes.get("start_date", plan.start_date), "Start date")
        target = self.guard.coerce_date(changes.get("target_date", plan.target_date), "Target date")
        self.guard.check_release_dates(start, target)
        status = self.guard.coerce_choice(models.ReleaseStatus, changes.get("status"), "status")

        with self.uow.atomic():
            for field, value in texts.items():
                setattr(plan, field, value)
            plan.start_date = start
            plan.target_date = target
            if status is not None:
                plan.status = status
            self.release_plan_repo.save(plan)
        return self._to_dict(plan)

    def delete(self, caller: str, plan_id: int) -> bool:
        """
        릴리스 계획을 삭제합니다. 연결된 사용자 스토리는 삭제되지 않고 연결만 해제됩니다.

        Raises:
            ReleasePlanNotFoundError: 해당 ID의 릴리스 계획을 찾을 수 없을 때.
            AccessDeniedError: 호출자가 프로젝트의 Product Owner가 아닐 때.
        """
        plan = self._get_plan(plan_id)
        self._require_product_owner(caller, plan.project_id, "delete release plans")
        with self.uow.atomic():
            unlinked = self.story_repo.unlink_release_plan(plan.id)
            self.release_plan_repo.delete(plan)
        logger.info("Deleted release plan %s (%s stories unlinked)", plan.release_key, unlinked)
        return True

    def assign_user_story(self, caller: str, plan_identifier: Union[int, str], story_id: int) -> Dict[str, Any]:
        """
        사용자 스토리를 릴리스 계획에 연결합니다.

        Args:
            plan_identifier: 릴리스 계획의 숫자 ID 또는 릴리스 키.
            story_id: 연결할 사용자 스토리 ID.

        Raises:
            ReleasePlanNotFoundError, UserStoryNotFoundError: 대상이 존재하지 않을 때.
            AccessDeniedError: 호출자가 프로젝트의 Product Owner가 아닐 때.
            ValidationError: 스토리와 릴리스 계획이 서로 다른 프로젝트에 속할 때.
        """
        plan = resolve_release_plan(self.release_plan_repo, plan_identifier)
        story = self._get_story(story_id)
        self._require_product_owner(caller, plan.project_id, "link user stories to release plans")
        self.guard.check_story_plan_affinity(story, plan)
        with self.uow.atomic():
            story.release_plan_id = plan.id
            self.story_repo.save(story)
        logger.info("Linked story %s to release plan %s", story.story_key, plan.release_key)
        return self._to_dict(plan)

    def unassign_user_story(self, caller: str, plan_id: int, story_id: int) -> Dict[str, Any]:
        plan = self._get_plan(plan_id)
        story = self._get_story(story_id)
        self._require_product_owner(caller, plan.project_id, "unlink user stories from release plans")
        if story.release_plan_id != plan.id:
            raise ValidationError(f"User story '{story_id}' is not linked to release plan '{plan_id}'.")
        with self.uow.atomic():
            story.release_plan_id = None
            self.story_repo.save(story)
        return self._to_dict(plan)

    def get(self, caller: str, plan_id: int) -> Dict[str, Any]:
        plan = self._get_plan(plan_id)
        deny_unless(self.authz.is_member(caller, plan.project_id), "Only project members can view release plans.")
        return self._to_dict(plan)

    def get_by_key(self, caller: str, release_key: str) -> Dict[str, Any]:
        plan = self.release_plan_repo.find_by_key(release_key)
        if not plan:
            raise ReleasePlanNotFoundError(f"Release plan with key '{release_key}' not found.")
        deny_unless(self.authz.is_member(caller, plan.project_id), "Only project members can view release plans.")
        return self._to_dict(plan)

    def list_by_project(self, caller: str, project_id: int) -> List[Dict[str, Any]]:
        """프로젝트의 릴리스 계획 목록을 시작일 순으로 조회합니다. 프로젝트 멤버만 조회할 수 있습니다."""
        deny_unless(self.authz.is_member(caller, project_id), "Only project members can view release plans.")
        if not self.project_repo.find_by_id(project_id):
            raise ProjectNotFoundError(f"Project with id '{project_id}' not found.")
        return [self._to_dict(p) for p in self.release_plan_repo.list_by_project_id(project_id)]

    def list_by_status(self, caller: str, status: Any) -> List[Dict[str, Any]]:
        """
        상태별 릴리스 계획 목록을 조회합니다.
        시스템 관리자가 아니면 호출자가 멤버인 프로젝트의 계획만 반환합니다.
        """
        user = self.authz.resolve_caller(caller)
        if user is None:
            raise AccessDeniedError("Unknown or inactive user.")
        status = self.guard.coerce_choice(models.ReleaseStatus, status, "status")
        if status is None:
            raise ValidationError("Status is required.")
        plans = self.release_plan_repo.list_by_status(status)
        if not user.is_system_admin:
            visible = {p.id for p in self.project_repo.list_by_member(user.id)}
            plans = [p for p in plans if p.project_id in visible]
        return [self._to_dict(p) for p in plans]
