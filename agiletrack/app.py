# agiletrack/app.py
from wsgiref.simple_server import make_server
from urllib.parse import parse_qs
import json
import logging
import sys
import re

# SQLAlchemy 및 의존성 임포트
from agiletrack.config import Settings, get_settings
from agiletrack.database.database import SessionLocal
from agiletrack.repositories.sqlalchemy import (
    SqlalchemyUnitOfWork, SqlalchemyUserRepository, SqlalchemyProjectRepository,
    SqlalchemyMembershipRepository, SqlalchemyReleasePlanRepository, SqlalchemyUserStoryRepository
)
from agiletrack.services.authorization import AuthorizationEngine
from agiletrack.services.consistency import ConsistencyGuard
from agiletrack.services.key_generator import IdentityKeyGenerator
from agiletrack.services.membership_store import MembershipStore
from agiletrack.services.user_service import UserService
from agiletrack.services.project_service import ProjectService
from agiletrack.services.release_plan_service import ReleasePlanService
from agiletrack.services.user_story_service import UserStoryService
from agiletrack.services.exceptions import (
    AccessDeniedError, AuthenticationError, ValidationError, NotFoundError, InvariantViolationError
)

logger = logging.getLogger(__name__)

# --------------------------------------------------------------------------
## 요청 처리 유틸리티 함수
# --------------------------------------------------------------------------

def get_request_data(environ):
    try:
        content_length = int(environ.get("CONTENT_LENGTH") or 0)
        data = json.loads(environ["wsgi.input"].read(content_length)) if content_length > 0 else {}
    except (ValueError, json.JSONDecodeError):
        raise ValueError("Invalid or missing JSON body.")
    if not isinstance(data, dict):
        raise ValueError("JSON body must be an object.")
    return data

def get_caller(environ):
    """상위 인증 계층이 설정한 'X-Remote-User' 헤더에서 호출자 사용자 이름을 꺼냅니다."""
    caller = (environ.get('HTTP_X_REMOTE_USER') or '').strip()
    if not caller:
        raise AuthenticationError("Missing 'X-Remote-User' header.")
    return caller

def get_query_param(environ, name):
    values = parse_qs(environ.get('QUERY_STRING', '')).get(name)
    return values[0] if values else None

# 하위 클래스도 매칭되도록 위에서부터 isinstance로 검사합니다.
ERROR_STATUS = (
    (AuthenticationError, "401 Unauthorized"),
    (AccessDeniedError, "403 Forbidden"),
    (NotFoundError, "404 Not Found"),
    (ValidationError, "400 Bad Request"),
    (ValueError, "400 Bad Request"),
)

def handle_exception(e):
    for error_cls, status in ERROR_STATUS:
        if isinstance(e, error_cls):
            return status, json.dumps({"error": str(e)})
    if isinstance(e, InvariantViolationError):
        logger.error("Invariant violation, request aborted", exc_info=e)
    else:
        logger.error("Unhandled error", exc_info=e)
    # 내부 메시지는 로그에만 남깁니다.
    return "500 Internal Server Error", json.dumps({"error": "Internal server error."})

# --------------------------------------------------------------------------
## WSGI 애플리케이션 (의존성 주입 및 라우팅)
# --------------------------------------------------------------------------

def build_services(db_session, settings: Settings = None):
    """하나의 DB 세션을 공유하는 리포지토리와 서비스 객체들을 생성합니다."""
    settings = settings or get_settings()
    uow = SqlalchemyUnitOfWork(db_session)
    user_repo = SqlalchemyUserRepository(db_session)
    project_repo = SqlalchemyProjectRepository(db_session)
    membership_repo = SqlalchemyMembershipRepository(db_session)
    release_plan_repo = SqlalchemyReleasePlanRepository(db_session)
    story_repo = SqlalchemyUserStoryRepository(db_session)

    guard = ConsistencyGuard()
    membership_store = MembershipStore(membership_repo, uow, guard)
    authz = AuthorizationEngine(user_repo, membership_store)
    key_generator = IdentityKeyGenerator(
        project_repo, release_plan_repo, story_repo, uow,
        default_prefix=settings.project_key_prefix, width=settings.key_pad_width,
        release_marker=settings.release_key_marker
    )

    return {
        'users': UserService(user_repo, project_repo, release_plan_repo, story_repo,
                             membership_store, authz, uow, guard),
        'projects': ProjectService(user_repo, project_repo, release_plan_repo, story_repo,
                                   membership_store, authz, key_generator, uow, guard),
        'release_plans': ReleasePlanService(project_repo, release_plan_repo, story_repo,
                                            authz, key_generator, uow, guard),
        'stories': UserStoryService(user_repo, project_repo, release_plan_repo, story_repo,
                                    authz, key_generator, uow, guard),
    }

def make_application(session_factory=SessionLocal, settings: Settings = None):
    settings = settings or get_settings()

    def application(environ, start_response):
        db_session = session_factory()
        try:
            # 1. 요청마다 새 세션으로 서비스를 생성해 environ을 통해 핸들러에 전달
            environ['services'] = build_services(db_session, settings)

            # 2. 라우팅 및 핸들러 실행
            path = environ.get("PATH_INFO", "")
            method = environ.get("REQUEST_METHOD", "")

            handler, path_args = None, []
            for route_method, pattern, route_handler in ROUTES:
                if method == route_method and (match := re.match(pattern, path)):
                    handler, path_args = route_handler, match.groups()
                    break

            if handler:
                status, response_body = handler(environ, *path_args)
            else:
                status, response_body = '404 Not Found', json.dumps({'error': 'Not Found'})

        except Exception as e:
            db_session.rollback()
            status, response_body = handle_exception(e)
        finally:
            db_session.close()

        start_response(status, [("Content-Type", "application/json")])
        return [response_body.encode("utf-8")]

    return application

# --------------------------------------------------------------------------
## 핸들러 함수 - 사용자
# --------------------------------------------------------------------------

def register_user_handler(environ, *args):
    data = get_request_data(environ)
    user = environ['services']['users'].register(
        username=data.get('username'), email=data.get('email'), password=data.get('password'),
        roles=data.get('roles', data.get('role')), full_name=data.get('full_name'),
        project_code=data.get('project_code')
    )
    return '201 Created', json.dumps(user)

def list_users_handler(environ, *args):
    users = environ['services']['users'].list_users(get_caller(environ))
    return '200 OK', json.dumps({"users": users})

def get_profile_handler(environ, *args):
    user = environ['services']['users'].get_profile(get_caller(environ))
    return '200 OK', json.dumps(user)

def update_profile_handler(environ, *args):
    data = get_request_data(environ)
    user = environ['services']['users'].update_profile(
        get_caller(environ), full_name=data.get('full_name'), email=data.get('email')
    )
    return '200 OK', json.dumps(user)

def change_password_handler(environ, *args):
    data = get_request_data(environ)
    environ['services']['users'].change_password(
        get_caller(environ), data.get('current_password'), data.get('new_password')
    )
    return '204 No Content', ''

def update_system_roles_handler(environ, user_id):
    data = get_request_data(environ)
    user = environ['services']['users'].update_system_roles(get_caller(environ), int(user_id), data.get('roles'))
    return '200 OK', json.dumps(user)

def deactivate_user_handler(environ, user_id):
    user = environ['services']['users'].deactivate_user(get_caller(environ), int(user_id))
    return '200 OK', json.dumps(user)

def delete_user_handler(environ, user_id):
    environ['services']['users'].delete_user(get_caller(environ), int(user_id))
    return '204 No Content', ''

# --------------------------------------------------------------------------
## 핸들러 함수 - 프로젝트 / 멤버십
# --------------------------------------------------------------------------

def create_project_handler(environ, *args):
    data = get_request_data(environ)
    project = environ['services']['projects'].create_project(
        get_caller(environ), name=data.get('name'), members=data.get('members'),
        description=data.get('description'), key_prefix=data.get('key_prefix'),
        project_code=data.get('project_code')
    )
    return '201 Created', json.dumps(project)

def list_projects_handler(environ, *args):
    projects = environ['services']['projects'].list_projects(get_caller(environ))
    return '200 OK', json.dumps({"projects": projects})

def get_project_handler(environ, project_id):
    project = environ['services']['projects'].get_project(get_caller(environ), int(project_id))
    return '200 OK', json.dumps(project)

def get_project_by_key_handler(environ, project_key):
    project = environ['services']['projects'].get_project_by_key(get_caller(environ), project_key)
    return '200 OK', json.dumps(project)

def delete_project_handler(environ, project_id):
    environ['services']['projects'].delete_project(get_caller(environ), int(project_id))
    return '204 No Content', ''

def join_project_handler(environ, *args):
    data = get_request_data(environ)
    membership = environ['services']['projects'].join_project(
        get_caller(environ), data.get('project_code'), data.get('role')
    )
    return '200 OK', json.dumps(membership)

def list_project_members_handler(environ, project_id):
    members = environ['services']['projects'].list_members(get_caller(environ), int(project_id))
    return '200 OK', json.dumps({"members": members})

def add_member_role_handler(environ, project_id, user_id, role_name):
    member = environ['services']['projects'].add_member_role(
        get_caller(environ), int(project_id), int(user_id), role_name
    )
    return '200 OK', json.dumps(member)

def remove_member_role_handler(environ, project_id, user_id, role_name):
    member = environ['services']['projects'].remove_member_role(
        get_caller(environ), int(project_id), int(user_id), role_name
    )
    return '200 OK', json.dumps(member)

def replace_member_roles_handler(environ, project_id, user_id):
    data = get_request_data(environ)
    member = environ['services']['projects'].replace_member_roles(
        get_caller(environ), int(project_id), int(user_id), data.get('roles')
    )
    return '200 OK', json.dumps(member)

def remove_member_handler(environ, project_id, user_id):
    environ['services']['projects'].remove_member(get_caller(environ), int(project_id), int(user_id))
    return '204 No Content', ''

# --------------------------------------------------------------------------
## 핸들러 함수 - 릴리스 계획
# --------------------------------------------------------------------------

def create_release_plan_handler(environ, project_id):
    data = get_request_data(environ)
    plan = environ['services']['release_plans'].create(
        get_caller(environ), int(project_id), name=data.get('name'),
        start_date=data.get('start_date'), target_date=data.get('target_date'),
        description=data.get('description'), goals=data.get('goals'), status=data.get('status')
    )
    return '201 Created', json.dumps(plan)

def list_project_release_plans_handler(environ, project_id):
    plans = environ['services']['release_plans'].list_by_project(get_caller(environ), int(project_id))
    return '200 OK', json.dumps({"release_plans": plans})

def list_release_plans_by_status_handler(environ, *args):
    plans = environ['services']['release_plans'].list_by_status(
        get_caller(environ), get_query_param(environ, 'status')
    )
    return '200 OK', json.dumps({"release_plans": plans})

def get_release_plan_handler(environ, plan_id):
    plan = environ['services']['release_plans'].get(get_caller(environ), int(plan_id))
    return '200 OK', json.dumps(plan)

def get_release_plan_by_key_handler(environ, release_key):
    plan = environ['services']['release_plans'].get_by_key(get_caller(environ), release_key)
    return '200 OK', json.dumps(plan)

def update_release_plan_handler(environ, plan_id):
    data = get_request_data(environ)
    plan = environ['services']['release_plans'].update(get_caller(environ), int(plan_id), data)
    return '200 OK', json.dumps(plan)

def delete_release_plan_handler(environ, plan_id):
    environ['services']['release_plans'].delete(get_caller(environ), int(plan_id))
    return '204 No Content', ''

def assign_story_handler(environ, plan_identifier, story_id):
    plan = environ['services']['release_plans'].assign_user_story(
        get_caller(environ), plan_identifier, int(story_id)
    )
    return '200 OK', json.dumps(plan)

def unassign_story_handler(environ, plan_id, story_id):
    plan = environ['services']['release_plans'].unassign_user_story(
        get_caller(environ), int(plan_id), int(story_id)
    )
    return '200 OK', json.dumps(plan)

# --------------------------------------------------------------------------
## 핸들러 함수 - 사용자 스토리
# --------------------------------------------------------------------------

def create_story_handler(environ, project_id):
    data = get_request_data(environ)
    story = environ['services']['stories'].create(
        get_caller(environ), int(project_id), title=data.get('title'), description=data.get('description'),
        acceptance_criteria=data.get('acceptance_criteria'), story_points=data.get('story_points'),
        business_value=data.get('business_value'), priority=data.get('priority'),
        is_mvp=bool(data.get('is_mvp', False)), assigned_to_user_id=data.get('assigned_to_user_id'),
        release_plan=data.get('release_plan')
    )
    return '201 Created', json.dumps(story)

def list_project_stories_handler(environ, project_id):
    stories = environ['services']['stories'].list_by_project(get_caller(environ), int(project_id))
    return '200 OK', json.dumps({"stories": stories})

def list_my_stories_handler(environ, *args):
    stories = environ['services']['stories'].list_for_user(get_caller(environ))
    return '200 OK', json.dumps({"stories": stories})

def get_story_handler(environ, story_id):
    story = environ['services']['stories'].get(get_caller(environ), int(story_id))
    return '200 OK', json.dumps(story)

def update_story_handler(environ, story_id):
    data = get_request_data(environ)
    story = environ['services']['stories'].update(get_caller(environ), int(story_id), data)
    return '200 OK', json.dumps(story)

def update_estimation_handler(environ, story_id):
    data = get_request_data(environ)
    story = environ['services']['stories'].update_estimation(
        get_caller(environ), int(story_id),
        story_points=data.get('story_points'), business_value=data.get('business_value')
    )
    return '200 OK', json.dumps(story)

def update_status_handler(environ, story_id):
    data = get_request_data(environ)
    story = environ['services']['stories'].update_status(get_caller(environ), int(story_id), data.get('status'))
    return '200 OK', json.dumps(story)

def update_sprint_ready_handler(environ, story_id):
    data = get_request_data(environ)
    story = environ['services']['stories'].update_sprint_ready(
        get_caller(environ), int(story_id), data.get('sprint_ready')
    )
    return '200 OK', json.dumps(story)

def update_starred_handler(environ, story_id):
    data = get_request_data(environ)
    story = environ['services']['stories'].update_starred(get_caller(environ), int(story_id), data.get('is_starred'))
    return '200 OK', json.dumps(story)

def update_mvp_handler(environ, story_id):
    data = get_request_data(environ)
    story = environ['services']['stories'].update_mvp(get_caller(environ), int(story_id), data.get('is_mvp'))
    return '200 OK', json.dumps(story)

def set_story_release_plan_handler(environ, story_id):
    data = get_request_data(environ)
    story = environ['services']['stories'].set_release_plan(
        get_caller(environ), int(story_id), data.get('release_plan')
    )
    return '200 OK', json.dumps(story)

def delete_story_handler(environ, story_id):
    environ['services']['stories'].delete(get_caller(environ), int(story_id))
    return '204 No Content', ''

ROUTES = [
    ('POST', r'^/v1/users$', register_user_handler),
    ('GET', r'^/v1/users$', list_users_handler),
    ('GET', r'^/v1/users/me$', get_profile_handler),
    ('PATCH', r'^/v1/users/me$', update_profile_handler),
    ('PUT', r'^/v1/users/me/password$', change_password_handler),
    ('PUT', r'^/v1/users/([0-9]+)/roles$', update_system_roles_handler),
    ('POST', r'^/v1/users/([0-9]+)/deactivate$', deactivate_user_handler),
    ('DELETE', r'^/v1/users/([0-9]+)$', delete_user_handler),
    ('POST', r'^/v1/projects$', create_project_handler),
    ('GET', r'^/v1/projects$', list_projects_handler),
    ('POST', r'^/v1/projects/join$', join_project_handler),
    ('GET', r'^/v1/projects/([0-9]+)$', get_project_handler),
    ('GET', r'^/v1/projects/key/([A-Za-z0-9_-]+)$', get_project_by_key_handler),
    ('DELETE', r'^/v1/projects/([0-9]+)$', delete_project_handler),
    ('GET', r'^/v1/projects/([0-9]+)/members$', list_project_members_handler),
    ('PUT', r'^/v1/projects/([0-9]+)/members/([0-9]+)/roles$', replace_member_roles_handler),
    ('PUT', r'^/v1/projects/([0-9]+)/members/([0-9]+)/roles/([A-Za-z_]+)$', add_member_role_handler),
    ('DELETE', r'^/v1/projects/([0-9]+)/members/([0-9]+)/roles/([A-Za-z_]+)$', remove_member_role_handler),
    ('DELETE', r'^/v1/projects/([0-9]+)/members/([0-9]+)$', remove_member_handler),
    ('GET', r'^/v1/projects/([0-9]+)/release-plans$', list_project_release_plans_handler),
    ('POST', r'^/v1/projects/([0-9]+)/release-plans$', create_release_plan_handler),
    ('GET', r'^/v1/projects/([0-9]+)/stories$', list_project_stories_handler),
    ('POST', r'^/v1/projects/([0-9]+)/stories$', create_story_handler),
    ('GET', r'^/v1/release-plans$', list_release_plans_by_status_handler),
    ('GET', r'^/v1/release-plans/([0-9]+)$', get_release_plan_handler),
    ('GET', r'^/v1/release-plans/key/([A-Za-z0-9_-]+)$', get_release_plan_by_key_handler),
    ('PATCH', r'^/v1/release-plans/([0-9]+)$', update_release_plan_handler),
    ('DELETE', r'^/v1/release-plans/([0-9]+)$', delete_release_plan_handler),
    ('PUT', r'^/v1/release-plans/([A-Za-z0-9_-]+)/stories/([0-9]+)$', assign_story_handler),
    ('DELETE', r'^/v1/release-plans/([0-9]+)/stories/([0-9]+)$', unassign_story_handler),
    ('GET', r'^/v1/stories$', list_my_stories_handler),
    ('GET', r'^/v1/stories/([0-9]+)$', get_story_handler),
    ('PATCH', r'^/v1/stories/([0-9]+)$', update_story_handler),
    ('PUT', r'^/v1/stories/([0-9]+)/estimation$', update_estimation_handler),
    ('PUT', r'^/v1/stories/([0-9]+)/status$', update_status_handler),
    ('PUT', r'^/v1/stories/([0-9]+)/sprint-ready$', update_sprint_ready_handler),
    ('PUT', r'^/v1/stories/([0-9]+)/starred$', update_starred_handler),
    ('PUT', r'^/v1/stories/([0-9]+)/mvp$', update_mvp_handler),
    ('PUT', r'^/v1/stories/([0-9]+)/release-plan$', set_story_release_plan_handler),
    ('DELETE', r'^/v1/stories/([0-9]+)$', delete_story_handler),
]

application = make_application()

# --------------------------------------------------------------------------
## 서버 실행
# --------------------------------------------------------------------------

if __name__ == "__main__":
    from agiletrack.database.db_init import initialize_db

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    try:
        initialize_db()
        with make_server("", settings.port, application) as httpd:
            logger.info("Serving agiletrack on port %s...", settings.port)
            httpd.serve_forever()
    except Exception as e:
        logger.error("Error starting server: %s", e)
        sys.exit(1)
