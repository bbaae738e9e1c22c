"""GitHub REST client implementing ``GitHostClient``.

Uses the git-data endpoints so that a whole transaction lands as a single
commit: the tree is created on top of the base commit's tree, the commit
gets the base as its only parent, and the branch ref is moved with
``force=false``. GitHub rejects a non fast-forward update with 422,
which surfaces as a failed compare-and-swap.
"""

from __future__ import annotations

import base64
import logging
from typing import Any

import httpx

from deployforge.core.document_store import DirectoryEntry, VersionToken
from deployforge.core.git_store import EMPTY_TOKEN, GitHostError

logger = logging.getLogger(__name__)


class GitHubClient:
    """Minimal GitHub git-data API client.

    Parameters
    ----------
    owner, repo:
        Repository coordinates.
    branch:
        Branch holding the metadata.
    token:
        Personal access or app token. Anonymous access is read-only.
    api_url:
        API root, overridable for GitHub Enterprise.
    transport:
        Optional ``httpx`` transport (tests pass ``httpx.MockTransport``).
    """

    DEFAULT_API_URL = "https://api.github.com"
    DEFAULT_TIMEOUT = 30.0

    def __init__(
        self,
        owner: str,
        repo: str,
        branch: str = "main",
        *,
        token: str = "",
        api_url: str = DEFAULT_API_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.branch = branch
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._http = httpx.Client(
            base_url=f"{api_url.rstrip('/')}/repos/{owner}/{repo}",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise GitHostError(f"GitHub {method} {url} failed: {exc}") from exc

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if response.is_error:
            raise GitHostError(
                f"GitHub {response.request.method} {response.request.url} "
                f"returned {response.status_code}: {response.text}"
            )
        return response.json()

    # ------------------------------------------------------------------
    # GitHostClient
    # ------------------------------------------------------------------

    def get_ref(self) -> VersionToken:
        response = self._request("GET", f"/git/ref/heads/{self.branch}")
        if response.status_code in (404, 409):
            # 409 is returned for a repository with no commits.
            return EMPTY_TOKEN
        return VersionToken(value=self._json(response)["object"]["sha"])

    def read_file(self, token: VersionToken, path: str) -> str | None:
        response = self._request("GET", f"/contents/{path}", params={"ref": token.value})
        if response.status_code == 404:
            return None
        payload = self._json(response)
        if isinstance(payload, list) or payload.get("type") != "file":
            return None
        return base64.b64decode(payload["content"]).decode("utf-8")

    def list_dir(self, token: VersionToken, path: str) -> list[DirectoryEntry]:
        response = self._request("GET", f"/contents/{path}", params={"ref": token.value})
        if response.status_code == 404:
            return []
        payload = self._json(response)
        if not isinstance(payload, list):
            return []
        return [
            DirectoryEntry(name=item["name"], type="dir" if item["type"] == "dir" else "file")
            for item in payload
        ]

    def create_commit(
        self, base: VersionToken, files: dict[str, str], message: str
    ) -> VersionToken:
        tree_body: dict[str, Any] = {
            "tree": [
                {"path": path, "mode": "100644", "type": "blob", "content": content}
                for path, content in sorted(files.items())
            ]
        }
        parents: list[str] = []
        if base != EMPTY_TOKEN:
            base_commit = self._json(self._request("GET", f"/git/commits/{base.value}"))
            tree_body["base_tree"] = base_commit["tree"]["sha"]
            parents = [base.value]

        tree = self._json(self._request("POST", "/git/trees", json=tree_body))
        commit = self._json(
            self._request(
                "POST",
                "/git/commits",
                json={"message": message, "tree": tree["sha"], "parents": parents},
            )
        )
        logger.debug("Created commit %s on top of %s", commit["sha"], base)
        return VersionToken(value=commit["sha"])

    def update_ref(self, new: VersionToken, expected: VersionToken) -> bool:
        if expected == EMPTY_TOKEN:
            response = self._request(
                "POST",
                "/git/refs",
                json={"ref": f"refs/heads/{self.branch}", "sha": new.value},
            )
        else:
            response = self._request(
                "PATCH",
                f"/git/refs/heads/{self.branch}",
                json={"sha": new.value, "force": False},
            )
        if response.status_code in (409, 422):
            logger.warning("Branch %s moved; GitHub refused the update", self.branch)
            return False
        self._json(response)
        return True
