"""GitHub contents API client: store the exported task data as one JSON file in a repository."""
from __future__ import annotations

import base64
import json
import logging
from typing import Any

import httpx

from models import now_iso

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
DATA_FILE = "todo-data.json"


class RemoteSyncError(RuntimeError):
    """Remote store failure (transport error or unexpected response)."""


class RemoteNotConfiguredError(RemoteSyncError):
    pass


class RemoteAuthError(RemoteSyncError):
    pass


class RemoteNotFoundError(RemoteSyncError):
    pass


class GitHubStorage:
    """Sync client for one data file in one repository. Tracks the file's blob sha between load and save."""

    def __init__(
        self,
        api_url: str = GITHUB_API,
        data_file: str = DATA_FILE,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.data_file = data_file.strip("/")
        self.token: str | None = None
        self.owner: str | None = None
        self.repo: str | None = None
        self.file_sha: str | None = None
        self._client = httpx.Client(base_url=self.api_url, timeout=timeout, transport=transport)

    def configure(self, token: str | None, repo: str | None) -> None:
        """Set credentials and 'owner/name' repository. Changing the target forgets the known sha."""
        owner = name = None
        if repo and "/" in repo:
            owner, name = (part.strip() or None for part in repo.strip().split("/", 1))
        if (owner, name) != (self.owner, self.repo):
            self.file_sha = None
        self.token = (token or "").strip() or None
        self.owner, self.repo = owner, name

    def is_configured(self) -> bool:
        return bool(self.token and self.owner and self.repo)

    def close(self) -> None:
        self._client.close()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github.v3+json",
        }

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise RemoteNotConfiguredError("GitHub not configured")

    @property
    def _contents_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}/contents/{self.data_file}"

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            raise RemoteSyncError(f"GitHub request failed: {e}") from e

    @staticmethod
    def _error_message(r: httpx.Response, fallback: str) -> str:
        try:
            return (r.json() or {}).get("message") or fallback
        except ValueError:
            return fallback

    def test_connection(self) -> bool:
        """Check that the token can see the repository."""
        self._require_configured()
        r = self._request("GET", f"/repos/{self.owner}/{self.repo}")
        if r.status_code == 404:
            raise RemoteNotFoundError("Repository not found. Make sure the repo exists and you have access.")
        if r.status_code in (401, 403):
            raise RemoteAuthError("Invalid token. Please check your Personal Access Token.")
        if r.is_error:
            raise RemoteSyncError(f"Failed to connect to GitHub ({r.status_code})")
        return True

    def load(self) -> dict[str, Any] | None:
        """Return the stored payload; None when not configured or the file does not exist yet."""
        if not self.is_configured():
            return None
        r = self._request("GET", self._contents_path)
        if r.status_code == 404:
            return None
        if r.status_code in (401, 403):
            raise RemoteAuthError(self._error_message(r, "GitHub rejected the token"))
        if r.is_error:
            raise RemoteSyncError(f"Failed to load data from GitHub ({r.status_code})")
        try:
            meta = r.json()
            self.file_sha = meta.get("sha")
            raw = base64.b64decode(meta.get("content") or "")
            data = json.loads(raw.decode("utf-8")) if raw.strip() else None
        except (ValueError, TypeError) as e:
            raise RemoteSyncError(f"GitHub data file is not valid JSON: {e}") from e
        if data is not None and not isinstance(data, dict):
            raise RemoteSyncError("GitHub data file must contain a JSON object")
        logger.info("Loaded %s from %s/%s", self.data_file, self.owner, self.repo)
        return data

    def _fetch_sha(self) -> str | None:
        r = self._request("GET", self._contents_path)
        if r.is_error:
            return None
        try:
            return (r.json() or {}).get("sha")
        except ValueError:
            return None

    def save(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Create or update the data file. Sends the last known sha so GitHub rejects stale overwrites."""
        self._require_configured()
        content = json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8")
        body: dict[str, Any] = {
            "message": f"Update todo data - {now_iso()}",
            "content": base64.b64encode(content).decode("ascii"),
        }
        if self.file_sha:
            body["sha"] = self.file_sha
        r = self._request("PUT", self._contents_path, json=body)
        if r.status_code in (409, 422) and "sha" not in body:
            # File exists but was never loaded: pick up its sha and retry once.
            sha = self._fetch_sha()
            if sha:
                body["sha"] = sha
                r = self._request("PUT", self._contents_path, json=body)
        if r.status_code in (401, 403):
            raise RemoteAuthError(self._error_message(r, "GitHub rejected the token"))
        if r.status_code == 404:
            raise RemoteNotFoundError(self._error_message(r, "Repository not found"))
        if r.is_error:
            raise RemoteSyncError(self._error_message(r, f"Failed to save to GitHub ({r.status_code})"))
        result = r.json()
        self.file_sha = ((result or {}).get("content") or {}).get("sha") or self.file_sha
        logger.debug("Saved %s to %s/%s sha=%s", self.data_file, self.owner, self.repo, self.file_sha)
        return result
