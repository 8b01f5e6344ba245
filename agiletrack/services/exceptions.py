# agiletrack/services/exceptions.py

# --- Authorization ---
class AccessDeniedError(Exception):
    """권한 판단 결과가 거부(False)일 때"""
    pass

class AuthenticationError(Exception):
    """호출자 신원이 요청에 포함되어 있지 않을 때"""
    pass

# --- Validation ---
class ValidationError(Exception):
    """입력값 또는 엔티티 간 일관성 규칙에 위배될 때"""
    pass

class UserCreationError(ValidationError):
    """사용자 생성(가입) 실패 시"""
    pass

class ProjectCreationError(ValidationError):
    """프로젝트 생성 실패 시"""
    pass

# --- Not Found ---
class NotFoundError(Exception):
    """참조한 엔티티를 ID나 키로 찾을 수 없을 때"""
    pass

class UserNotFoundError(NotFoundError):
    """사용자를 찾을 수 없을 때"""
    pass

class ProjectNotFoundError(NotFoundError):
    """프로젝트를 찾을 수 없을 때"""
    pass

class ReleasePlanNotFoundError(NotFoundError):
    """릴리스 계획을 찾을 수 없을 때"""
    pass

class UserStoryNotFoundError(NotFoundError):
    """사용자 스토리를 찾을 수 없을 때"""
    pass

# --- Fatal ---
class InvariantViolationError(Exception):
    """
    저장 후 ID 누락, 저장소 수준의 유일성 위반 등 버그를 의미하는 상태일 때.
    작업 전체를 중단해야 하며, 다른 값으로 재시도하지 않습니다.
    """
    pass
