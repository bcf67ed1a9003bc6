"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./helpdesk.db"
    # Bounded lock wait + retry policy for write transactions
    DB_LOCK_TIMEOUT_MS: int = 5000
    DB_TX_MAX_ATTEMPTS: int = 4
    DB_TX_BASE_DELAY: float = 0.05
    DB_TX_MAX_DELAY: float = 1.0

    # Session token (issued by the auth service, supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""

    # Shared secrets
    INBOUND_WEBHOOK_SECRET: str = ""
    INTERNAL_SECRET: str = ""

    # Support mailbox + sender filtering
    SUPPORT_MAILBOX: str = ""
    INTERNAL_EMAIL_DOMAINS: str = ""
    BLOCKED_SENDER_PATTERNS: str = "postmaster@,mailer-daemon,no-reply,noreply,bounce"

    # Directory
    FALLBACK_ORGANIZATION_NAME: str = "Unclassified"
    # lookup_or_create | lookup_only
    WEBHOOK_REQUESTER_POLICY: str = "lookup_or_create"

    # SLA targets
    SLA_FIRST_RESPONSE_MINUTES: int = 30
    SLA_RESOLUTION_MINUTES: int = 8 * 60

    # Matching
    FUZZY_MATCH_WINDOW_DAYS: int = 7

    # Keyword priority detection for inbound tickets (comma-separated)
    URGENT_KEYWORDS: str = (
        "urgent,emergency,critical,outage,blocker,urgente,emergencia,crítico,caído,bloqueante"
    )
    HIGH_PRIORITY_KEYWORDS: str = "important,asap,priority,importante,prioridad,cuanto antes"

    # Email-poll-A (Microsoft Graph mailbox)
    GRAPH_ENABLED: bool = False
    GRAPH_TENANT_ID: str = ""
    GRAPH_CLIENT_ID: str = ""
    GRAPH_CLIENT_SECRET: str = ""
    GRAPH_POLL_INTERVAL_SECONDS: int = 120
    GRAPH_BATCH_SIZE: int = 20

    # Email-poll-B (IMAP mailbox)
    IMAP_ENABLED: bool = False
    IMAP_HOST: str = "outlook.office365.com"
    IMAP_PORT: int = 993
    IMAP_USER: str = ""
    IMAP_PASSWORD: str = ""
    IMAP_FOLDER: str = "INBOX"
    IMAP_POLL_INTERVAL_SECONDS: int = 120
    IMAP_BATCH_SIZE: int = 20

    # Outbound notifier (transactional email API)
    NOTIFY_ENABLED: bool = False
    NOTIFY_API_URL: str = "https://api.resend.com/emails"
    NOTIFY_API_KEY: str = ""
    NOTIFY_FROM_NAME: str = "Support"
    NOTIFY_MESSAGE_ID_DOMAIN: str = "helpdesk.local"

    # Rate limiting (slowapi)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_WEBHOOK: str = "60/minute"

    # Run guard for periodic tasks
    REDIS_URL: str = ""
    POLL_LEASE_SECONDS: int = 600

    # Error tracking (optional)
    SENTRY_DSN: str = ""

    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets

    @property
    def internal_domains_list(self) -> list[str]:
        """Parse INTERNAL_EMAIL_DOMAINS into lowercase list."""
        return _split_csv(self.INTERNAL_EMAIL_DOMAINS)

    @property
    def blocked_sender_patterns_list(self) -> list[str]:
        return _split_csv(self.BLOCKED_SENDER_PATTERNS)

    @property
    def urgent_keywords_list(self) -> list[str]:
        return _split_csv(self.URGENT_KEYWORDS)

    @property
    def high_priority_keywords_list(self) -> list[str]:
        return _split_csv(self.HIGH_PRIORITY_KEYWORDS)


def _split_csv(value: str) -> list[str]:
    return [item.strip().lower() for item in (value or "").split(",") if item.strip()]


settings = Settings()
