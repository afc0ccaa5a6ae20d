"""Qinglong panel OpenAPI client.

Stores scripts and registers cron jobs on a Qinglong panel using an
OpenAPI application's client ID and secret.

API: the panel's ``/open`` endpoints. Every response body has the shape
``{"code": 200, "data": ..., "message": ...}``; a ``code`` other than 200
is a failure even when the HTTP status is 200.
"""

import logging
import time
from typing import Any

import httpx

logger = logging.getLogger(__name__)

# Refresh the token this many seconds before the panel says it expires
_TOKEN_MARGIN_SECS = 60.0
_TIMEOUT = 30.0


class QinglongError(Exception):
    """Raised when the panel rejects a request or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class QinglongClient:
    """Async client for the Qinglong OpenAPI.

    Implements the task backend used by the workflow engine.

    Example:
        client = QinglongClient("http://localhost:5700", client_id, client_secret)
        await client.upload_script("demo.py", content)
        await client.create_cron_job("demo", "task demo.py", "0 0 * * *")
    """

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        timeout: float = _TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Panel URL, e.g. ``http://localhost:5700``
            client_id: OpenAPI application client ID
            client_secret: OpenAPI application client secret
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout = timeout
        self._transport = transport
        self._token: str | None = None
        self._token_expires_at = 0.0

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self._timeout,
            transport=self._transport,
        )

    @staticmethod
    def _unwrap(response: httpx.Response) -> Any:
        """Return the ``data`` field of a panel response or raise."""
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise QinglongError(
                f"HTTP {e.response.status_code}: {e.response.text[:200]}",
                status_code=e.response.status_code,
            ) from e

        try:
            body = response.json()
        except ValueError as e:
            raise QinglongError(f"Invalid response from panel: {response.text[:200]}") from e

        if body.get("code") != 200:
            message = body.get("message") or f"Panel returned code {body.get('code')}"
            raise QinglongError(message, status_code=body.get("code"))
        return body.get("data")

    async def _get_token(self, client: httpx.AsyncClient) -> str:
        if self._token and time.time() < self._token_expires_at - _TOKEN_MARGIN_SECS:
            return self._token

        response = await client.get(
            "/open/auth/token",
            params={"client_id": self._client_id, "client_secret": self._client_secret},
        )
        data = self._unwrap(response) or {}
        token = data.get("token")
        if not token:
            raise QinglongError("Panel did not return an access token")

        self._token = token
        self._token_expires_at = float(data.get("expiration") or 0)
        logger.debug("Obtained Qinglong access token")
        return token

    async def _request(self, method: str, path: str, payload: dict[str, Any]) -> Any:
        try:
            async with self._client() as client:
                token = await self._get_token(client)
                response = await client.request(
                    method,
                    path,
                    json=payload,
                    headers={"Authorization": f"Bearer {token}"},
                )
                if response.status_code == 401:
                    # Token revoked on the panel side; fetch a new one once
                    self._token = None
                    token = await self._get_token(client)
                    response = await client.request(
                        method,
                        path,
                        json=payload,
                        headers={"Authorization": f"Bearer {token}"},
                    )
                return self._unwrap(response)
        except httpx.RequestError as e:
            raise QinglongError(f"Connection error: {e}") from e

    async def upload_script(self, file_name: str, content: str, path: str = "") -> None:
        """Store a script on the panel.

        Args:
            file_name: Script file name
            content: Script source
            path: Directory under the panel's script root (default: root)

        Raises:
            QinglongError: If the upload fails
        """
        await self._request(
            "POST",
            "/open/scripts",
            {"filename": file_name, "path": path, "content": content},
        )
        logger.info(f"Uploaded script {file_name} to Qinglong")

    async def create_cron_job(self, name: str, command: str, schedule: str) -> dict[str, Any]:
        """Register a scheduled job on the panel.

        Args:
            name: Job name
            command: Command to run (e.g., ``task demo.py``)
            schedule: Cron expression

        Returns:
            The job as stored by the panel

        Raises:
            QinglongError: If the panel rejects the job
        """
        data = await self._request(
            "POST",
            "/open/crons",
            {"name": name, "command": command, "schedule": schedule},
        )
        logger.info(f"Created Qinglong cron job {name!r} ({schedule})")
        return data or {}

    async def check(self) -> tuple[bool, str]:
        """Verify the credentials by requesting a token.

        Returns:
            Tuple of (success, message)
        """
        try:
            async with self._client() as client:
                self._token = None
                await self._get_token(client)
            return True, "Authenticated"
        except httpx.RequestError as e:
            return False, f"Connection error: {e}"
        except QinglongError as e:
            return False, e.message
