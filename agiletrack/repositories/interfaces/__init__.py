from .errors import DuplicateEntryError
from .unit_of_work import IUnitOfWork
from .user import IUserRepository
from .project import IProjectRepository
from .membership import IMembershipRepository
from .release_plan import IReleasePlanRepository
from .user_story import IUserStoryRepository
