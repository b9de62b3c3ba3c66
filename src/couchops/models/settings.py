"""Client context models."""

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from couchops.config import (
    get_couch_password,
    get_couch_url,
    get_couch_username,
    get_max_concurrency,
    get_request_timeout,
)

USER_AGENT = "couchops/0.1.0"


class Credentials(BaseModel):
    """Account name and password sent as HTTP basic auth."""

    model_config = ConfigDict(frozen=True)

    username: str = Field(min_length=1)
    password: SecretStr


class ClientSettings(BaseModel):
    """Read-only context shared by every operation of a client session."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "http://localhost:5984"
    credentials: Credentials | None = None
    timeout: float | None = Field(default=30.0, gt=0)
    max_concurrency: int = Field(default=4, ge=1)
    default_headers: dict[str, str] = Field(default_factory=dict)
    user_agent: str = USER_AGENT

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {v!r}")
        return v.rstrip("/")

    @classmethod
    def from_env(cls) -> "ClientSettings":
        """Assemble settings from the COUCH_* environment variables."""
        username = get_couch_username()
        password = get_couch_password()
        credentials = None
        if username is not None:
            credentials = Credentials(username=username, password=SecretStr(password or ""))
        return cls(
            base_url=get_couch_url(),
            credentials=credentials,
            timeout=get_request_timeout(),
            max_concurrency=get_max_concurrency(),
        )
