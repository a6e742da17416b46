"""Google Drive adapter.

Keeps the whole tree as one named JSON file in the user's Drive, using
the Drive REST v3 API and an OAuth implicit-grant access token.

Authentication is two-phase. ``begin_auth()`` returns a ``PendingAuth``
right away, carrying the consent URL; the user consents in a browser,
and whatever receives the redirect calls ``complete_auth()`` (or
``complete_auth_from_url()``). Awaiting the pending handle yields the
token.

Files are addressed by name. Two sessions saving the same new filename
at once can both create a file; later lookups use the first match.
"""

import asyncio
import json
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit

import httpx

from .._common import dump_json
from ..config import DRIVE_FILE_SCOPE
from ..core import AsyncStoreAdapter, Goal, goals_from_json
from ..errors import AuthError, TransportError, UserCancelled

logger = logging.getLogger(__name__)

DRIVE_API = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_API = "https://www.googleapis.com/upload/drive/v3"
AUTH_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
REVOKE_ENDPOINT = "https://oauth2.googleapis.com/revoke"
JSON_MIME = "application/json"


@dataclass(frozen=True)
class AccessToken:
    """An OAuth access token as returned by the implicit grant."""
    access_token: str
    token_type: str = "Bearer"
    scope: str = ""
    expires_at: Optional[float] = None

    @classmethod
    def from_response(cls, raw: Dict[str, Any]) -> "AccessToken":
        if not raw.get("access_token"):
            raise AuthError("Token response has no access_token")
        expires_in = raw.get("expires_in")
        return cls(
            access_token=raw["access_token"],
            token_type=raw.get("token_type", "Bearer"),
            scope=raw.get("scope", ""),
            expires_at=time.time() + float(expires_in) if expires_in else None,
        )

    @property
    def expired(self) -> bool:
        return self.expires_at is not None and time.time() >= self.expires_at


class PendingAuth:
    """Handle for an authorization waiting on user consent.

    Await it (or call ``wait``) to get the ``AccessToken``.
    """

    def __init__(self, url: str, state: str, future: "asyncio.Future[AccessToken]"):
        self.url = url
        self.state = state
        self._future = future

    def done(self) -> bool:
        return self._future.done()

    async def wait(self, timeout: Optional[float] = None) -> AccessToken:
        return await asyncio.wait_for(asyncio.shield(self._future), timeout)

    def __await__(self):
        return self._future.__await__()


def escape_query_value(value: str) -> str:
    """Escape a string literal for a Drive ``q`` query."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def multipart_related(metadata: Dict[str, Any], content: str, boundary: str) -> bytes:
    """Build a multipart/related upload body (metadata part, then media)."""
    lines = [
        f"--{boundary}",
        "Content-Type: application/json; charset=UTF-8",
        "",
        json.dumps(metadata),
        f"--{boundary}",
        f"Content-Type: {JSON_MIME}",
        "",
        content,
        f"--{boundary}--",
        "",
    ]
    return "\r\n".join(lines).encode("utf-8")


class GoogleDriveAdapter(AsyncStoreAdapter):
    """Store adapter writing the snapshot to one Drive file.

    Args:
        client_id: OAuth client id
        scope: OAuth scope (``drive.file`` limits access to files this
            app created)
        redirect_uri: Where the consent screen sends the token
        filename: Name of the file holding the snapshot
        timeout: Per-request timeout in seconds
        client: Optional preconfigured ``httpx.AsyncClient``
        opener: Called with the consent URL, e.g. ``webbrowser.open``
    """

    name = "drive"

    def __init__(
        self,
        client_id: str,
        scope: str = DRIVE_FILE_SCOPE,
        redirect_uri: str = "http://localhost:8765/oauth2callback",
        filename: str = "flashrevise_data.json",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        opener: Optional[Callable[[str], Any]] = None,
    ):
        super().__init__(max_concurrent=4)
        self.client_id = client_id
        self.scope = scope
        self.redirect_uri = redirect_uri
        self.filename = filename
        self.opener = opener
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._token: Optional[AccessToken] = None
        self._pending: Optional[PendingAuth] = None

    # Authentication

    @property
    def is_signed_in(self) -> bool:
        return self._token is not None and not self._token.expired

    @property
    def token(self) -> Optional[AccessToken]:
        return self._token

    def begin_auth(self) -> PendingAuth:
        """Start an interactive token grant.

        Must be called with an event loop running. Returns the existing
        handle if an authorization is already pending.
        """
        if self._pending is not None and not self._pending.done():
            return self._pending

        state = secrets.token_urlsafe(16)
        url = AUTH_ENDPOINT + "?" + urlencode({
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "token",
            "scope": self.scope,
            "state": state,
            "include_granted_scopes": "true",
        })
        future = asyncio.get_running_loop().create_future()
        self._pending = PendingAuth(url, state, future)
        logger.info("Waiting for Drive consent")
        if self.opener is not None:
            self.opener(url)
        return self._pending

    def complete_auth(self, token_response: Dict[str, Any]) -> AccessToken:
        """Deliver the token grant result to the pending authorization.

        Raises:
            AuthError: No authorization is pending, the state is missing
                or does not match, or the response carries an error
        """
        pending = self._pending
        if pending is None or pending.done():
            raise AuthError("No authorization in progress")

        try:
            if token_response.get("state") != pending.state:
                raise AuthError("OAuth state missing or mismatched")
            if token_response.get("error"):
                raise AuthError(f"Token grant failed: {token_response['error']}")
            token = AccessToken.from_response(token_response)
        except AuthError as e:
            pending._future.set_exception(e)
            self._pending = None
            raise

        self._token = token
        pending._future.set_result(token)
        self._pending = None
        logger.info("Drive sign-in complete")
        return token

    def complete_auth_from_url(self, redirect_url: str) -> AccessToken:
        """Complete using the redirect URL (token is in the fragment)."""
        parts = urlsplit(redirect_url)
        params = dict(parse_qsl(parts.fragment or parts.query))
        return self.complete_auth(params)

    def cancel_auth(self) -> None:
        """Abandon a pending authorization; awaiting it raises UserCancelled."""
        if self._pending is not None and not self._pending.done():
            self._pending._future.set_exception(UserCancelled("Drive consent cancelled"))
        self._pending = None

    async def authenticate(self) -> AccessToken:
        """Begin the grant and wait for the user to complete it."""
        return await self.begin_auth()

    async def sign_out(self) -> bool:
        """Revoke and forget the cached token.

        Returns:
            True if revoked, False if there was no token or Google refused
            the revocation (the token is forgotten either way)
        """
        token, self._token = self._token, None
        if token is None:
            return False
        try:
            response = await self._client.post(
                REVOKE_ENDPOINT,
                data={"token": token.access_token},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            logger.warning("Token revocation failed: %s", e)
            return False
        if response.is_error:
            logger.warning("Token revocation refused: HTTP %d", response.status_code)
            return False
        logger.info("Drive token revoked")
        return True

    # Requests

    def _auth_headers(self) -> Dict[str, str]:
        if self._token is None:
            raise AuthError("Not signed in to Google Drive")
        if self._token.expired:
            raise AuthError("Google Drive token expired, sign in again")
        return {"Authorization": f"Bearer {self._token.access_token}"}

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        headers = {**self._auth_headers(), **kwargs.pop("headers", {})}
        async with self.semaphore:
            try:
                response = await self._client.request(method, url, headers=headers, **kwargs)
            except httpx.HTTPError as e:
                raise TransportError(f"Drive request failed: {e}") from e
        logger.debug("%s %s -> %d", method, url, response.status_code)
        if response.status_code == 401:
            raise AuthError("Drive rejected the access token", 401)
        if response.is_error:
            raise TransportError(
                f"Drive API error {response.status_code}: {response.text[:200]}",
                response.status_code,
            )
        return response

    async def find_file(self, filename: str) -> Optional[str]:
        """Look up a file id by exact name. Returns None if absent."""
        response = await self._request("GET", f"{DRIVE_API}/files", params={
            "q": f"name = '{escape_query_value(filename)}' and trashed = false",
            "fields": "files(id, name)",
            "spaces": "drive",
        })
        files = response.json().get("files") or []
        if len(files) > 1:
            logger.warning("%d Drive files named %r, using the first", len(files), filename)
        return files[0]["id"] if files else None

    async def save(self, filename: str, content: Any) -> str:
        """Create or overwrite a file by name.

        Args:
            filename: Exact file name
            content: Text, or any JSON-serializable value

        Returns:
            The Drive file id
        """
        body_text = content if isinstance(content, str) else dump_json(content)
        boundary = f"flashrevise-{secrets.token_hex(8)}"
        headers = {"Content-Type": f"multipart/related; boundary={boundary}"}

        file_id = await self.find_file(filename)
        if file_id:
            body = multipart_related({"mimeType": JSON_MIME}, body_text, boundary)
            await self._request(
                "PATCH", f"{DRIVE_UPLOAD_API}/files/{file_id}",
                params={"uploadType": "multipart"}, content=body, headers=headers,
            )
            logger.info("Updated Drive file %s", filename)
            return file_id

        body = multipart_related({"name": filename, "mimeType": JSON_MIME}, body_text, boundary)
        response = await self._request(
            "POST", f"{DRIVE_UPLOAD_API}/files",
            params={"uploadType": "multipart"}, content=body, headers=headers,
        )
        logger.info("Created Drive file %s", filename)
        return response.json()["id"]

    async def load(self, filename: str) -> Optional[str]:
        """Fetch a file's raw content by name. Returns None if absent."""
        file_id = await self.find_file(filename)
        if not file_id:
            return None
        response = await self._request("GET", f"{DRIVE_API}/files/{file_id}", params={"alt": "media"})
        return response.text

    # Store adapter interface

    async def save_tree(self, goals: Sequence[Goal]) -> str:
        return await self.save(self.filename, [goal.to_dict() for goal in goals])

    async def load_tree(self) -> Optional[Tuple[Goal, ...]]:
        text = await self.load(self.filename)
        if text is None:
            return None
        return goals_from_json(json.loads(text))

    async def get_stats(self) -> dict:
        stats = await super().get_stats()
        stats.update(signed_in=self.is_signed_in, filename=self.filename)
        return stats

    async def close(self):
        if self._owns_client:
            await self._client.aclose()
