"""Session and user records exposed to the rest of the application."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..utils import mask


class GitHubUser(BaseModel):
    """The signed-in GitHub account (fields the deployer relies on)."""

    id: int
    login: str
    name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    html_url: Optional[str] = None


class AuthStatus(BaseModel):
    """Answer to "who is signed in"."""

    is_authenticated: bool = False
    user: Optional[GitHubUser] = None
    token: Optional[str] = None
    scopes: List[str] = Field(default_factory=list)

    def public_view(self) -> Dict[str, Any]:
        """Status without the raw token, safe to return to a browser or log."""
        data = self.model_dump(exclude={"token"})
        data["token"] = mask(self.token) if self.token else None
        return data
