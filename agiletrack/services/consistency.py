import re
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from agiletrack.database import models
from agiletrack.services.exceptions import ValidationError, InvariantViolationError

KEY_PREFIX_PATTERN = re.compile(r"^[A-Z][A-Z0-9]{1,9}$")
MAX_PROJECT_NAME_LENGTH = 200


class ConsistencyGuard:
    """
    두 엔티티 이상에 걸친 구조적 규칙을 커밋 전에 검사합니다.

    상태를 갖지 않으며 부수 효과도 없습니다. 제안된 변경을 받아들이거나(정규화된 값을 반환)
    ValidationError로 거부할 뿐입니다.
    """

    # --- 역할 ---
    @staticmethod
    def coerce_role(value: Any) -> models.UserRole:
        if isinstance(value, models.UserRole):
            return value
        try:
            return models.UserRole(str(value).strip().upper())
        except ValueError:
            raise ValidationError(f"Unknown role '{value}'.") from None

    def coerce_roles(self, values: Optional[Iterable[Any]]) -> Set[models.UserRole]:
        if values is None:
            return set()
        if isinstance(values, (str, models.UserRole)):
            values = [values]
        if not isinstance(values, (list, tuple, set, frozenset)):
            raise ValidationError("Roles must be a role name or a list of role names.")
        return {self.coerce_role(v) for v in values}

    def check_role_replacement(self, roles: Optional[Iterable[Any]]) -> Set[models.UserRole]:
        """
        멤버십 역할 교체 요청을 검사합니다. 교체 후 역할이 하나도 없으면 안 됩니다.
        전체 탈퇴는 remove_all_roles를 명시적으로 사용해야 합니다.

        Raises:
            ValidationError: 역할 목록이 비어있거나 알 수 없는 역할이 포함되었을 때.
        """
        coerced = self.coerce_roles(roles)
        if not coerced:
            raise ValidationError("At least one role must be provided.")
        return coerced

    def check_registration_roles(self, roles: Optional[Iterable[Any]]) -> models.UserRole:
        """
        자가 가입 시 선택한 역할을 검사합니다.
        관리자의 역할 교체와 달리, 가입은 정확히 하나의 역할만 허용하며 SYSTEM_ADMIN은 선택할 수 없습니다.

        Returns:
            선택된 단 하나의 역할.
        """
        coerced = self.coerce_roles(roles)
        if not coerced:
            raise ValidationError("A role must be selected.")
        if len(coerced) != 1:
            raise ValidationError("Exactly one role must be selected.")
        role = next(iter(coerced))
        if role == models.UserRole.SYSTEM_ADMIN:
            raise ValidationError("System Admin accounts cannot be self-registered.")
        return role

    # --- 릴리스 계획 ---
    @staticmethod
    def check_release_dates(start_date: Optional[date], target_date: Optional[date]):
        """
        릴리스 계획의 날짜 순서를 검사합니다.
        수정 시에는 기존 값과 변경 값을 병합한 최종 값으로 호출해야 합니다.
        """
        if start_date is None:
            raise ValidationError("Start date is required.")
        if target_date is None:
            raise ValidationError("Target date is required.")
        if target_date < start_date:
            raise ValidationError("Target date must not be before start date.")

    @staticmethod
    def check_story_plan_affinity(story: models.UserStory, plan: models.ReleasePlan):
        """
        사용자 스토리와 릴리스 계획이 같은 프로젝트에 속하는지 검사합니다.

        Raises:
            InvariantViolationError: 어느 한쪽이라도 프로젝트 참조가 없을 때. (저장된 엔티티에서는 불가능)
            ValidationError: 서로 다른 프로젝트에 속할 때.
        """
        if plan.project_id is None:
            raise InvariantViolationError(f"Release plan '{plan.id}' is missing an associated project.")
        if story.project_id is None:
            raise InvariantViolationError(f"User story '{story.id}' is missing an associated project.")
        if story.project_id != plan.project_id:
            raise ValidationError("User story must belong to the same project as the release plan.")

    # --- 프로젝트 / 스토리 입력값 ---
    @staticmethod
    def check_text(value: Any, label: str, required: bool = True, max_length: Optional[int] = None) -> Optional[str]:
        """
        요청 본문에서 온 문자열 값을 검사하고 앞뒤 공백을 제거해 반환합니다.
        required가 False이면 None이나 공백뿐인 문자열은 None으로 반환합니다.

        Raises:
            ValidationError: 문자열이 아니거나, 필수값이 비어있거나, 최대 길이를 넘을 때.
        """
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"{label} must be a string.")
        text = value.strip() if value else ""
        if not text:
            if required:
                raise ValidationError(f"{label} is required.")
            return None
        if max_length is not None and len(text) > max_length:
            raise ValidationError(f"{label} must not exceed {max_length} characters.")
        return text

    def check_key_prefix(self, prefix: Any) -> str:
        normalized = (self.check_text(prefix, "Key prefix", required=False) or "").upper()
        if not KEY_PREFIX_PATTERN.match(normalized):
            raise ValidationError(
                f"Key prefix '{prefix}' must be 2-10 letters or digits and start with a letter."
            )
        return normalized

    def check_project_draft(self, name: Optional[str], members: Optional[List[Dict[str, Any]]]) -> List[Tuple[int, Set[models.UserRole]]]:
        """
        프로젝트 생성 요청을 검사합니다.

        Args:
            name: 프로젝트 이름.
            members: {'user_id': int, 'roles': [...]} 형태의 멤버 목록.

        Returns:
            (user_id, 역할 집합) 튜플의 리스트.
        """
        self.check_text(name, "Project name", max_length=MAX_PROJECT_NAME_LENGTH)
        if not members:
            raise ValidationError("At least one project member with role is required.")
        if not isinstance(members, list):
            raise ValidationError("Project members must be a list.")

        drafts = []
        seen = set()
        for member in members:
            if not isinstance(member, dict):
                raise ValidationError("Each project member must be an object with 'user_id' and 'roles'.")
            user_id = member.get("user_id")
            if user_id is None:
                raise ValidationError("User ID is required for all members.")
            try:
                user_id = int(user_id)
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid user ID '{user_id}'.") from None
            roles = self.coerce_roles(member.get("roles", member.get("role")))
            if not roles:
                raise ValidationError(f"Role is required for member '{user_id}'.")
            if user_id in seen:
                raise ValidationError(f"Duplicate user ID found: {user_id}")
            seen.add(user_id)
            drafts.append((user_id, roles))
        return drafts

    def check_story_fields(self, title: Any, description: Any) -> Tuple[str, str]:
        return self.check_text(title, "Title"), self.check_text(description, "Description")

    # --- 값 변환 ---
    @staticmethod
    def coerce_date(value: Any, label: str) -> Optional[date]:
        if value is None or isinstance(value, date):
            return value
        try:
            return date.fromisoformat(str(value))
        except ValueError:
            raise ValidationError(f"{label} must be an ISO date (YYYY-MM-DD), got '{value}'.") from None

    @staticmethod
    def coerce_choice(enum_cls, value: Any, label: str):
        if value is None or isinstance(value, enum_cls):
            return value
        try:
            return enum_cls(str(value).strip().upper())
        except ValueError:
            allowed = ", ".join(member.value for member in enum_cls)
            raise ValidationError(f"Invalid {label} '{value}'. Allowed: {allowed}.") from None
