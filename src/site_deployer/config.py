"""Configuration management using Pydantic Settings."""

from typing import Dict, List

from pydantic import Field
from pydantic_settings import BaseSettings

# Recommended scope sets for different use cases
SCOPE_SETS: Dict[str, List[str]] = {
    "minimal": ["user:email"],
    "basic": ["user:email", "public_repo"],
    "full": ["user:email", "repo"],
    "organization": ["user:email", "public_repo", "read:org"],
}


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    # Server Configuration
    server_host: str = "127.0.0.1"
    server_port: int = 8000
    server_url: str = Field(
        default="http://localhost:8000",
        description="The canonical URL of this deployer host",
    )
    log_level: str = "INFO"
    auth_debug: bool = Field(
        default=False,
        description="Trace authentication steps at debug level (tokens masked)",
    )

    # GitHub OAuth App Configuration
    github_client_id: str = Field(
        default="",
        description="OAuth App client ID (public, no secret is ever used)",
    )
    github_redirect_uri: str = Field(
        default="http://localhost:8000/auth/callback",
        description="Redirect URI registered for the OAuth App",
    )
    github_authorize_url: str = "https://github.com/login/oauth/authorize"
    github_token_url: str = "https://github.com/login/oauth/access_token"
    github_device_code_url: str = "https://github.com/login/device/code"
    github_api_url: str = "https://api.github.com"

    default_scopes: List[str] = SCOPE_SETS["basic"]
    auth_state_ttl_seconds: int = 300

    # REST client behaviour
    request_timeout_seconds: float = 30.0
    max_retries: int = 2
    retry_base_delay_seconds: float = 1.0
    network_retry_base_delay_seconds: float = 0.5
    user_agent: str = "site-deployer/0.1.0"

    # GitHub Pages publishing
    pages_branch: str = "main"
    pages_path: str = "/"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @property
    def callback_path(self) -> str:
        """Path component of the configured redirect URI."""
        from urllib.parse import urlparse

        return urlparse(self.github_redirect_uri).path or "/"


# Singleton instance
settings = Settings()
