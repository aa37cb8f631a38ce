"""Settings schema with defaults.

Uses Pydantic Settings for automatic env var loading. Env vars use double
underscore as the nested delimiter:
    ADGROUPSYNC_NAMESPACE=Corp
    ADGROUPSYNC_LOCALIZED__EVERYONE=Tout le monde
    ADGROUPSYNC_SERVERS='[{"host": "dc1.example.com", "method": "ssl", "port": 636}]'
"""

from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from adgroupsync.core.config.enums import TransportMethod

DEFAULT_LDAP_READ_TIMEOUT_SECS = 90


class ServerConfig(BaseModel):
    """Connection settings for one directory server."""

    host: str = Field(description="Host name or address of the domain controller")
    port: int = Field(389, description="LDAP port")
    method: TransportMethod = Field(TransportMethod.STANDARD, description="standard or ssl")
    user: Optional[str] = Field(None, description="Bind user, overrides default_user")
    password: Optional[SecretStr] = Field(None, description="Bind password")

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, value):
        """Accept the method name in any case."""
        if isinstance(value, str):
            return value.strip().lower()
        return value

    def redacted(self) -> dict:
        """Return a loggable dump with the password hidden."""
        dump = self.model_dump(mode="json")
        dump["password"] = "XXXXXX"
        return dump


class LocalizedNames(BaseModel):
    """Display names for the synthetic well-known groups and domains."""

    everyone: str = "Everyone"
    nt_authority: str = "NT Authority"
    interactive: str = "Interactive"
    authenticated_users: str = "Authenticated Users"
    builtin: str = "BUILTIN"


class Settings(BaseSettings):
    """Runtime settings for the group sync service."""

    model_config = SettingsConfigDict(
        env_prefix="ADGROUPSYNC_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    servers: List[ServerConfig] = Field(default_factory=list)
    default_user: str = ""
    default_password: SecretStr = SecretStr("")
    namespace: str = Field("Default", description="Namespace qualifying every principal")
    feed_builtin_groups: bool = False
    localized: LocalizedNames = Field(default_factory=LocalizedNames)
    ldap_read_timeout_secs: int = DEFAULT_LDAP_READ_TIMEOUT_SECS

    sink_url: Optional[str] = None
    full_crawl_interval_secs: int = 86400
    incremental_crawl_interval_secs: int = 900
    log_level: str = "INFO"

    @field_validator("ldap_read_timeout_secs", mode="before")
    @classmethod
    def default_timeout(cls, value):
        """Zero or blank falls back to the default read timeout."""
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_LDAP_READ_TIMEOUT_SECS
        if int(value) == 0:
            return DEFAULT_LDAP_READ_TIMEOUT_SECS
        return value

    @model_validator(mode="after")
    def validate_credentials(self):
        """Every server needs an effective user and password."""
        for server in self.servers:
            user, password = self.credentials_for(server)
            if not user:
                raise ValueError(f"user not specified for host {server.host}")
            if not password:
                raise ValueError(f"password not specified for host {server.host}")
        return self

    def credentials_for(self, server: ServerConfig) -> Tuple[str, str]:
        """Resolve (user, password) for a server, falling back to the defaults."""
        user = server.user if server.user is not None else self.default_user
        secret = server.password if server.password is not None else self.default_password
        return user, secret.get_secret_value()
