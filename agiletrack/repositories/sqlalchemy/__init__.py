from .sqlalchemy_unit_of_work import SqlalchemyUnitOfWork
from .sqlalchemy_user_repository import SqlalchemyUserRepository
from .sqlalchemy_project_repository import SqlalchemyProjectRepository
from .sqlalchemy_membership_repository import SqlalchemyMembershipRepository
from .sqlalchemy_release_plan_repository import SqlalchemyReleasePlanRepository
from .sqlalchemy_user_story_repository import SqlalchemyUserStoryRepository
