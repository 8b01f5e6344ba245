from .enums import UserRole, ReleaseStatus, StoryStatus, StoryPriority
from .user import User, UserSystemRole
from .project import Project
from .membership import ProjectMember
from .release_plan import ReleasePlan
from .user_story import UserStory
