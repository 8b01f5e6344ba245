import logging
import uuid
from typing import Callable, Optional

from agiletrack.database import models
from agiletrack.repositories.interfaces import (
    IProjectRepository, IReleasePlanRepository, IUserStoryRepository, IUnitOfWork
)
from agiletrack.services.consistency import ConsistencyGuard
from agiletrack.services.exceptions import InvariantViolationError

logger = logging.getLogger(__name__)

PLACEHOLDER_PREFIX = "TEMP-"


class IdentityKeyGenerator:
    """
    숫자 ID가 할당된 뒤에만 계산할 수 있는, 사람이 읽을 수 있는 고유 키를 부여합니다.

    1. 임시 키(TEMP-<uuid4>)로 엔티티를 먼저 저장해 NOT NULL/UNIQUE 제약을 만족시킵니다.
    2. 저장으로 할당된 숫자 ID로 최종 키(prefix-000id)를 계산합니다.
    3. 같은 트랜잭션 안에서 임시 키를 최종 키로 교체합니다.

    최종 키는 유일한 숫자 ID의 결정적 함수이므로 동시 생성에서도 충돌하지 않습니다.
    """

    def __init__(self, project_repo: IProjectRepository, release_plan_repo: IReleasePlanRepository,
                 story_repo: IUserStoryRepository, uow: IUnitOfWork,
                 default_prefix: str = "PROJ", width: int = 3, release_marker: str = ""):
        self.project_repo = project_repo
        self.release_plan_repo = release_plan_repo
        self.story_repo = story_repo
        self.uow = uow
        self.default_prefix = default_prefix
        self.width = width
        self.release_marker = release_marker

    @staticmethod
    def placeholder() -> str:
        return f"{PLACEHOLDER_PREFIX}{uuid.uuid4().hex}"

    def format_key(self, prefix: str, numeric_id: int, marker: str = "") -> str:
        """(예: format_key('PROJ', 7) -> 'PROJ-007', format_key('PROJ-007', 42, 'R') -> 'PROJ-007-R042')"""
        return f"{prefix}-{marker}{numeric_id:0{self.width}d}"

    def _create_with_key(self, entity, repo, key_attr: str, final_key: Callable[[int], str]):
        kind = type(entity).__name__
        with self.uow.atomic():
            setattr(entity, key_attr, self.placeholder())
            entity = repo.create(entity)
            if entity is None or entity.id is None:
                logger.error("%s has no id after the first persistence step", kind)
                raise InvariantViolationError(f"{kind} id is missing after save; {key_attr} cannot be assigned.")
            setattr(entity, key_attr, final_key(entity.id))
            entity = repo.save(entity)
        logger.info("Created %s %s", kind, getattr(entity, key_attr))
        return entity

    def create_project(self, project: models.Project, prefix: Optional[str] = None) -> models.Project:
        """
        프로젝트를 저장하고 최종 프로젝트 키를 부여합니다.

        Args:
            project: 아직 저장되지 않은 프로젝트 모델.
            prefix: 프로젝트가 지정한 짧은 코드. 없으면 기본 접두사('PROJ')를 사용합니다.

        Returns:
            최종 키가 부여된 프로젝트 모델.

        Raises:
            ValidationError: 접두사 형식이 잘못되었을 때.
            InvariantViolationError: 첫 저장 후에도 숫자 ID가 없을 때.
        """
        prefix = ConsistencyGuard().check_key_prefix(prefix) if prefix else self.default_prefix
        return self._create_with_key(
            project, self.project_repo, "project_key", lambda pk: self.format_key(prefix, pk)
        )

    def create_release_plan(self, plan: models.ReleasePlan, project_key: str) -> models.ReleasePlan:
        """릴리스 계획을 저장하고, 상위 프로젝트 키를 접두사로 하는 릴리스 키를 부여합니다."""
        return self._create_with_key(
            plan, self.release_plan_repo, "release_key",
            lambda pk: self.format_key(project_key, pk, self.release_marker)
        )

    def create_user_story(self, story: models.UserStory, project_key: str) -> models.UserStory:
        """사용자 스토리를 저장하고, 상위 프로젝트 키를 접두사로 하는 스토리 키를 부여합니다."""
        return self._create_with_key(
            story, self.story_repo, "story_key", lambda pk: self.format_key(project_key, pk)
        )
