# Table names
IDENTITIES_TABLE = "identities"
TOURNAMENTS_TABLE = "tournaments"
MEMBERSHIPS_TABLE = "tournament_memberships"
INVITATIONS_TABLE = "invitations"
REDEMPTIONS_TABLE = "invitation_redemptions"
MERGE_JOBS_TABLE = "merge_jobs"

# Tournament roles
ROLE_OWNER = "owner"
ROLE_CO_ADMIN = "co-admin"
ROLE_TRAINER = "trainer"
ROLE_COLLABORATOR = "collaborator"
ROLE_VIEWER = "viewer"
TOURNAMENT_ROLES = (
    ROLE_OWNER,
    ROLE_CO_ADMIN,
    ROLE_TRAINER,
    ROLE_COLLABORATOR,
    ROLE_VIEWER,
)

# Global roles
GLOBAL_ROLE_USER = "user"
GLOBAL_ROLE_ADMIN = "admin"
GLOBAL_ROLE_GUEST = "guest"

# Tournament status
TOURNAMENT_ACTIVE = "active"
TOURNAMENT_ARCHIVED = "archived"
TOURNAMENT_DELETED = "deleted"
INACTIVE_TOURNAMENT_STATUSES = (TOURNAMENT_ARCHIVED, TOURNAMENT_DELETED)

# Guest quota
GUEST_TOURNAMENT_LIMIT = 3

# Invitations
INVITATION_TOKEN_BYTES = 24  # 32 url-safe characters
DEFAULT_INVITATION_EXPIRY_DAYS = 7
DEFAULT_INVITATION_MAX_USES = 1

# Auth flow timing (seconds)
SET_SESSION_TIMEOUT = 10.0
VERIFY_SESSION_TIMEOUT = 5.0
AUTH_FLOW_TIMEOUT = 15.0
MAX_AUTH_RETRIES = 2
AUTH_RETRY_DELAY = 0.15
PROVIDER_HTTP_TIMEOUT = 8.0

# Redirect targets
REDIRECT_HOME = "/"
REDIRECT_LOGIN = "/login"
REDIRECT_SET_PASSWORD = "/set-password"
REDIRECT_INVITE = "/invite"

# Cookie holding the tab-scoped store
TAB_COOKIE_NAME = "tk_tab"

# Local storage keys
GUEST_IDENTITY_KEY = "auth:guestUser"
RECOVERY_INTENT_KEY = "auth:passwordRecovery"
PENDING_MERGE_KEY = "auth:pendingMergeUserId"
PROVIDER_SESSION_KEY = "auth:session"
CODE_VERIFIER_KEY = "auth:codeVerifier"
MERGE_STATE_KEY = "auth:mergeState"
RECOVERY_INTENT_TTL = 600
PENDING_MERGE_TTL = 60 * 60
MERGE_STATE_TTL = 60 * 60
GUEST_CACHE_TTL = 60 * 60 * 24 * 30

# Account merge
MERGE_BATCH_SIZE = 50
MAX_MERGE_ATTEMPTS = 3

# Provider messages are trimmed before they reach the client
MAX_ERROR_MESSAGE_LENGTH = 200
