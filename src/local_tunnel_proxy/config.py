"""Configuration models for local-tunnel-proxy."""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .common.utils import MAX_PORT, MIN_PORT, format_host_port, mask_sensitive_data

DEFAULT_TARGET_HOST = "localhost"
DEFAULT_PROBE_TIMEOUT = 3.0
DEFAULT_IDLE_TIMEOUT = 30.0
DEFAULT_SHUTDOWN_TIMEOUT = 5.0
DEFAULT_CALLBACK_PATH = "/oauth/callback"
AUTHTOKEN_ENV_VAR = "NGROK_AUTHTOKEN"


class TargetAddress(BaseModel):
    """Address of the local HTTP service being exposed."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="forbid")

    host: str = Field(
        default=DEFAULT_TARGET_HOST, min_length=1, description="Local target host"
    )
    port: int = Field(ge=MIN_PORT, le=MAX_PORT, description="Local target port")

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        """Reject hosts that would break the target URL."""
        if any(c in v for c in "/?#@ "):
            raise ValueError("Host must be a bare hostname or IP address")
        return v

    @property
    def netloc(self) -> str:
        """host:port pair, suitable for the Host header."""
        return format_host_port(self.host, self.port)

    @property
    def url(self) -> str:
        """Base URL requests are forwarded to."""
        return f"http://{self.netloc}"

    def __str__(self) -> str:
        return self.netloc


class TunnelProxyConfig(BaseModel):
    """Resolved runtime configuration for a tunnel session."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="forbid")

    target: TargetAddress
    auth_token: str = Field(min_length=1, repr=False, description="ngrok authtoken")
    probe_timeout: float = Field(
        default=DEFAULT_PROBE_TIMEOUT, gt=0, le=60.0, description="Probe timeout in seconds"
    )
    idle_timeout: float = Field(
        default=DEFAULT_IDLE_TIMEOUT,
        gt=0,
        le=3600.0,
        description="Per-connection idle timeout of the proxy listener",
    )
    shutdown_timeout: float = Field(
        default=DEFAULT_SHUTDOWN_TIMEOUT,
        gt=0,
        le=60.0,
        description="Upper bound for releasing the proxy listener",
    )
    callback_path: str = Field(
        default=DEFAULT_CALLBACK_PATH, description="Suggested OAuth redirect path"
    )
    print_url_only: bool = Field(
        default=False, description="Only print the public URL on stdout"
    )

    @field_validator("callback_path")
    @classmethod
    def validate_callback_path(cls, v: str) -> str:
        """Callback path is appended to the public URL, so it must be absolute."""
        if not v.startswith("/"):
            raise ValueError("Callback path must start with '/'")
        if any(c in v for c in "?# "):
            raise ValueError("Callback path must not contain a query, fragment or spaces")
        return v

    @property
    def masked_token(self) -> str:
        return mask_sensitive_data(self.auth_token)

    def redirect_uri(self, public_url: str) -> str:
        """Suggested redirect URI for OAuth providers."""
        return public_url.rstrip("/") + self.callback_path
