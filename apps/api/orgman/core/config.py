"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_RELATIONSHIP_TYPES = {
    "ceo": "CEO",
    "primary_hr_contact": "Primary HR Contact",
    "employee_staff": "Employee",
    "member_contact": "Member Contact",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    LOG_LEVEL: str = "INFO"

    # Database (scheduled batch queue)
    DATABASE_URL: str = "sqlite:///./orgman.db"

    # Internal service-to-service endpoints
    INTERNAL_SECRET: str = ""  # Sent as X-Internal-Secret by the host platform and cron

    # Membership API
    MEMBERSHIP_API_BASE_URL: str = "http://localhost:3001"
    MEMBERSHIP_API_TOKEN: str = ""
    MEMBERSHIP_API_TIMEOUT_SECONDS: float = 15.0
    MEMBERSHIP_API_MAX_ATTEMPTS: int = 3

    # Roster strategy: cascade | direct | groups | membership_cycle
    ROSTER_STRATEGY: str = "direct"

    # Role slugs
    ROLE_OWNER: str = "membership_owner"
    ROLE_MANAGER: str = "membership_manager"
    ROLE_EDITOR: str = "org_editor"

    # Roster permissions
    PREVENT_OWNER_REMOVAL: bool = False  # Direct mode only; cascade/groups always protect
    PREVENT_OWNER_ASSIGNMENT: bool = True
    RELATIONSHIP_BASED_PERMISSIONS: bool = False
    RELATIONSHIP_ROLES_MAP: dict[str, list[str]] = {}  # JSON: {"ceo": ["membership_manager"]}

    # Member addition
    BASE_MEMBER_ROLE: str = "member"
    AUTO_ASSIGN_ROLES: str = ""  # Comma-separated

    # Relationship types
    DEFAULT_RELATIONSHIP_TYPE: str = "employee_staff"
    MEMBER_ADDITION_RELATIONSHIP_TYPE: str = "position"
    RELATIONSHIP_TYPES: dict[str, str] = DEFAULT_RELATIONSHIP_TYPES  # JSON slug -> label

    # Member edits
    ALLOW_RELATIONSHIP_TYPE_EDITING: bool = True
    ALLOW_DESCRIPTION_EDITING: bool = True

    # Groups roster mode
    GROUPS_MANAGE_ROLES: str = (
        "president,delegate,alternate_delegate,council_delegate,"
        "council_alternate_delegate,correspondent"
    )
    GROUPS_ROSTER_ROLES: str = "member,observer"
    GROUPS_MEMBER_ROLE: str = "member"
    GROUPS_SEAT_LIMITED_ROLES: str = "member"
    GROUPS_REMOVAL_MODE: str = "end_date"  # end_date | delete
    GROUPS_ASSOCIATION_KEY: str = "association"
    GROUPS_ASSOCIATION_VALUE_FIELD: str = "name"
    GROUPS_MEMBER_PAGE_SIZE: int = 50

    # Membership cycle roster mode
    MEMBERSHIP_CYCLE_PREVENT_OWNER_REMOVAL: bool = True
    MEMBERSHIP_CYCLE_ADD_ROLES: str = "membership_owner,membership_manager"
    MEMBERSHIP_CYCLE_REMOVE_ROLES: str = "membership_owner,membership_manager"

    # Bulk upload
    BULK_UPLOAD_BATCH_SIZE: int = 25
    BULK_UPLOAD_SCHEDULE_DELAY_SECONDS: int = 2
    BULK_UPLOAD_JOB_RETENTION: int = 20
    BULK_UPLOAD_MAX_ERROR_SNIPPETS: int = 5
    BULK_UPLOAD_SNIPPET_MAX_LENGTH: int = 240
    BULK_UPLOAD_RELATIONSHIP_REQUIRED: bool = True
    BULK_UPLOAD_ALLOWED_RELATIONSHIP_TYPES: str = ""  # Empty allows every configured type
    BULK_UPLOAD_RELATIONSHIP_ALIASES: dict[str, str] = {"employee": "employee_staff"}
    BULK_UPLOAD_ALLOWED_ROLES: str = ""  # Empty allows every role
    BULK_UPLOAD_EXCLUDED_ROLES: str = ""
    BULK_UPLOAD_COLUMNS: dict[str, dict] = {}  # JSON overrides keyed by column

    # Notifications
    NOTIFICATIONS_ENABLED: bool = True
    NOTIFICATION_FROM_EMAIL: str = "noreply@example.com"
    NOTIFICATION_FALLBACK_EMAIL: str = ""

    # Key/value store (bulk upload jobs, caches, intents)
    REDIS_URL: str = ""  # Empty or memory:// keeps the process-local store
    REDIS_MAX_CONNECTIONS: int = 20
    KV_KEY_PREFIX: str = "orgman:"

    # Caching
    MEMBER_CACHE_TTL_SECONDS: int = 300
    PENDING_INTENT_TTL_SECONDS: int = 3600

    @staticmethod
    def _split(value: str) -> list[str]:
        return [item.strip() for item in value.split(",") if item.strip()]

    @property
    def auto_assign_roles_list(self) -> list[str]:
        """Parse AUTO_ASSIGN_ROLES into a list."""
        return self._split(self.AUTO_ASSIGN_ROLES)

    @property
    def groups_manage_roles_list(self) -> list[str]:
        return self._split(self.GROUPS_MANAGE_ROLES)

    @property
    def groups_roster_roles_list(self) -> list[str]:
        return self._split(self.GROUPS_ROSTER_ROLES)

    @property
    def groups_seat_limited_roles_list(self) -> list[str]:
        return self._split(self.GROUPS_SEAT_LIMITED_ROLES)

    @property
    def membership_cycle_add_roles_list(self) -> list[str]:
        return self._split(self.MEMBERSHIP_CYCLE_ADD_ROLES)

    @property
    def membership_cycle_remove_roles_list(self) -> list[str]:
        return self._split(self.MEMBERSHIP_CYCLE_REMOVE_ROLES)

    @property
    def bulk_allowed_relationship_types_list(self) -> list[str]:
        """Allowed relationship slugs; empty means every configured type."""
        return [t.lower() for t in self._split(self.BULK_UPLOAD_ALLOWED_RELATIONSHIP_TYPES)]

    @property
    def bulk_allowed_roles_list(self) -> list[str]:
        return self._split(self.BULK_UPLOAD_ALLOWED_ROLES)

    @property
    def bulk_excluded_roles_list(self) -> list[str]:
        return self._split(self.BULK_UPLOAD_EXCLUDED_ROLES)

    @property
    def bulk_batch_size(self) -> int:
        """Batch size clamped to 1..500."""
        return max(1, min(500, self.BULK_UPLOAD_BATCH_SIZE))


settings = Settings()
