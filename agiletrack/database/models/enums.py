import enum


class UserRole(str, enum.Enum):
    """
    시스템 전역 역할이자 프로젝트 범위 역할로 사용되는 역할 목록입니다.
    SYSTEM_ADMIN만이 모든 프로젝트에 대한 우회(override) 권한을 가집니다.
    """
    PRODUCT_OWNER = "PRODUCT_OWNER"
    SCRUM_MASTER = "SCRUM_MASTER"
    DEVELOPER = "DEVELOPER"
    SYSTEM_ADMIN = "SYSTEM_ADMIN"

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


class ReleaseStatus(str, enum.Enum):
    PLANNED = "PLANNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class StoryStatus(str, enum.Enum):
    NEW = "NEW"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    BLOCKED = "BLOCKED"


class StoryPriority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"
