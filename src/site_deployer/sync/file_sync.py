"""Reconcile a set of generated files against repository contents."""

import binascii
import logging
from enum import Enum
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..errors import AuthenticationError, GitHubAPIError, NotFoundError
from ..http_client.github_client import GitHubClient, decode_content

logger = logging.getLogger(__name__)

README_PATH = "readme.md"


class FileRecord(BaseModel):
    """One file to publish, built fresh per deploy from in-memory content."""

    path: str = Field(..., description="Repository-relative path")
    content: str = Field(..., description="UTF-8 text content")
    message: Optional[str] = Field(default=None, description="Commit message")
    sha: Optional[str] = Field(
        default=None, description="Known blob SHA, used when updating"
    )

    @field_validator("path")
    @classmethod
    def _validate_path(cls, value: str) -> str:
        if not value:
            raise ValueError("path must not be empty")
        if value.startswith("/"):
            raise ValueError("path must be relative (no leading slash)")
        if "\\" in value:
            raise ValueError("path must use forward slashes")
        for segment in value.split("/"):
            if segment in ("", ".", ".."):
                raise ValueError(f"invalid path segment in {value!r}")
        return value

    def create_message(self) -> str:
        return self.message or f"Add {self.path}"

    def update_message(self) -> str:
        return self.message or f"Update {self.path}"

    @property
    def encoded(self) -> bytes:
        return self.content.encode("utf-8")


class SyncOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class SyncReport(BaseModel):
    """Per-path outcome of one upload_files call."""

    outcomes: Dict[str, SyncOutcome] = Field(default_factory=dict)

    def record(self, path: str, outcome: SyncOutcome) -> None:
        self.outcomes[path] = outcome

    def paths(self, outcome: SyncOutcome) -> List[str]:
        return [path for path, result in self.outcomes.items() if result == outcome]

    @property
    def changed(self) -> bool:
        return any(result != SyncOutcome.UNCHANGED for result in self.outcomes.values())


def _same_content(existing: Dict, record: FileRecord) -> bool:
    """Byte-for-byte comparison of the repository copy against the record."""
    encoded = existing.get("content")
    if not encoded:
        return record.encoded == b"" and existing.get("size") == 0
    try:
        return decode_content(encoded) == record.encoded
    except (binascii.Error, ValueError):
        return False


class FileSyncEngine:
    """
    Uploads files one at a time through the contents API.

    Files are processed sequentially: the contents API has no batch write
    and parallel writes to one path race on its SHA. Re-uploading identical
    content is a no-op.
    """

    def __init__(self, client: GitHubClient):
        self._client = client

    async def upload_files(
        self,
        owner: str,
        repo: str,
        files: Iterable[FileRecord],
        branch: Optional[str] = None,
    ) -> SyncReport:
        """
        Create or update every file in ``files``.

        Args:
            owner: Repository owner login
            repo: Repository name
            files: Records to publish
            branch: Target branch (repository default when omitted)

        Returns:
            SyncReport with the outcome for each path

        Raises:
            GitHubAPIError: The first failure that is not a tolerated conflict
        """
        report = SyncReport()
        for record in files:
            if record.path.lower() == README_PATH:
                outcome = await self._sync_readme(owner, repo, record, branch)
                if outcome is not None:
                    report.record(record.path, outcome)
                    continue
            report.record(record.path, await self._sync_file(owner, repo, record, branch))

        logger.info(
            f"Synced {len(report.outcomes)} file(s) to {owner}/{repo}: "
            f"{len(report.paths(SyncOutcome.CREATED))} created, "
            f"{len(report.paths(SyncOutcome.UPDATED))} updated, "
            f"{len(report.paths(SyncOutcome.UNCHANGED))} unchanged"
        )
        return report

    async def _fetch(self, owner: str, repo: str, path: str) -> Optional[Dict]:
        try:
            return await self._client.get_file_content(owner, repo, path)
        except NotFoundError:
            return None

    async def _sync_readme(
        self, owner: str, repo: str, record: FileRecord, branch: Optional[str]
    ) -> Optional[SyncOutcome]:
        """
        README.md usually exists from auto_init, so check it before writing.

        Returns None when it does not exist yet (normal create path applies).
        """
        existing = await self._fetch(owner, repo, record.path)
        if existing is None:
            return None
        if _same_content(existing, record):
            logger.debug(f"{record.path} unchanged, skipping")
            return SyncOutcome.UNCHANGED

        try:
            await self._client.create_or_update_file(
                owner, repo, record.path, record.content, record.update_message(),
                sha=existing.get("sha"), branch=branch,
            )
            return SyncOutcome.UPDATED
        except AuthenticationError:
            raise
        except GitHubAPIError as first_error:
            logger.warning(f"{record.path} update failed ({first_error!r}), refetching SHA")
            latest = await self._fetch(owner, repo, record.path)
            if latest is None or not latest.get("sha"):
                raise
            try:
                await self._client.create_or_update_file(
                    owner, repo, record.path, record.content, record.update_message(),
                    sha=latest["sha"], branch=branch,
                )
                return SyncOutcome.UPDATED
            except GitHubAPIError:
                if _same_content(latest, record):
                    return SyncOutcome.UNCHANGED
                raise

    async def _sync_file(
        self, owner: str, repo: str, record: FileRecord, branch: Optional[str]
    ) -> SyncOutcome:
        # Fast path: blind create avoids a 404 probe for brand-new paths
        try:
            await self._client.create_or_update_file(
                owner, repo, record.path, record.content, record.create_message(),
                sha=record.sha, branch=branch,
            )
            return SyncOutcome.UPDATED if record.sha else SyncOutcome.CREATED
        except AuthenticationError:
            raise
        except GitHubAPIError as create_error:
            original = create_error

        # Conflict path: the file probably exists and needs its SHA
        try:
            existing = await self._client.get_file_content(owner, repo, record.path)
        except NotFoundError:
            raise original from None

        sha = existing.get("sha")
        if not sha:
            raise original

        if _same_content(existing, record):
            logger.debug(f"{record.path} unchanged, skipping")
            return SyncOutcome.UNCHANGED

        try:
            await self._client.create_or_update_file(
                owner, repo, record.path, record.content, record.update_message(),
                sha=sha, branch=branch,
            )
            return SyncOutcome.UPDATED
        except AuthenticationError:
            raise
        except GitHubAPIError as update_error:
            # A concurrent writer may already have published the same bytes
            try:
                latest = await self._fetch(owner, repo, record.path)
            except GitHubAPIError:
                latest = None
            if latest is not None and _same_content(latest, record):
                logger.info(f"{record.path} already holds the intended content")
                return SyncOutcome.UNCHANGED
            raise update_error
