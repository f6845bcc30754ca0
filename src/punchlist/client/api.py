"""HTTP client for the punchlist REST API.

This module provides:
- RemoteAPI: HTTP client used by the sync engine
- Fetch operations for projects, punchlist items, photos and users
- Generic create/update/delete for queued offline operations
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from punchlist.core.config import ServerConfig
from punchlist.core.types import EntityType

logger = logging.getLogger(__name__)

# Collection path segment for each synchronized entity type
ENTITY_PATHS: dict[EntityType, str] = {
    EntityType.PROJECT: "projects",
    EntityType.PUNCHLIST_ITEM: "items",
    EntityType.PHOTO: "photos",
    EntityType.USER: "users",
}


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NetworkUnavailableError(APIError):
    """The server could not be reached (connection refused, DNS, timeout)."""


class AuthenticationError(APIError):
    """Authentication failed."""


class ConflictError(APIError):
    """The server refused the change because of a conflicting state."""


class NotFoundError(APIError):
    """Resource not found."""


class RemoteAPI:
    """HTTP client for the punchlist server API."""

    def __init__(
        self,
        config: ServerConfig,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize the API client.

        Args:
            config: Server connection settings.
            client: Optional pre-built httpx client (tests inject an ASGI
                test client here).
        """
        self._config = config
        headers = {"Accept": "application/json"}
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"
        if client is None:
            client = httpx.Client(
                base_url=config.server_url,
                timeout=config.timeout,
                verify=config.verify_ssl,
                headers=headers,
            )
        else:
            client.headers.update(headers)
        self._client = client

    @property
    def server_url(self) -> str:
        return self._config.server_url

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> RemoteAPI:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, mapping transport failures to NetworkUnavailableError."""
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise NetworkUnavailableError(f"Server unreachable: {e}") from e
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code == 401:
            raise AuthenticationError("Invalid or expired token", 401)
        if response.status_code == 404:
            raise NotFoundError(self._detail(response, "Resource not found"), 404)
        if response.status_code == 409:
            raise ConflictError(self._detail(response, "Conflict"), 409)
        if response.status_code >= 400:
            raise APIError(self._detail(response, "Unknown error"), response.status_code)
        return response

    @staticmethod
    def _detail(response: httpx.Response, default: str) -> str:
        try:
            detail = response.json().get("detail", default)
        except ValueError:
            return default
        return detail if isinstance(detail, str) else str(detail)

    @staticmethod
    def _path(entity_type: EntityType) -> str:
        return f"/api/{ENTITY_PATHS[EntityType(entity_type)]}"

    # === Health check ===

    def health_check(self) -> bool:
        """Check if the server is reachable and healthy.

        Returns:
            True if server is healthy.
        """
        try:
            response = self._client.get("/health")
            return response.status_code == 200
        except httpx.RequestError:
            return False

    # === Download operations ===

    def fetch_project(self, project_id: str) -> dict[str, Any]:
        """Get a project by id.

        Raises:
            NotFoundError: If the project does not exist.
        """
        response = self._request("GET", f"/api/projects/{project_id}")
        result: dict[str, Any] = response.json()
        return result

    def fetch_items(self, project_id: str) -> list[dict[str, Any]]:
        """List the punchlist items of a project."""
        response = self._request("GET", f"/api/projects/{project_id}/items")
        result: list[dict[str, Any]] = response.json()
        return result

    def fetch_photos(self, item_id: str) -> list[dict[str, Any]]:
        """List the photos attached to a punchlist item."""
        response = self._request("GET", f"/api/items/{item_id}/photos")
        result: list[dict[str, Any]] = response.json()
        return result

    def fetch_users(self) -> list[dict[str, Any]]:
        """List all users."""
        response = self._request("GET", "/api/users")
        result: list[dict[str, Any]] = response.json()
        return result

    # === Upload operations ===

    def create(
        self,
        entity_type: EntityType,
        payload: dict[str, Any],
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        """Create an entity on the server.

        Args:
            entity_type: Collection to create in.
            payload: Entity document (a provisional offline id is ignored
                by the server, which assigns its own).
            idempotency_key: Stable key so a retried create is applied once.

        Returns:
            The created entity as stored by the server.
        """
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        response = self._request(
            "POST", self._path(entity_type), json=payload, headers=headers
        )
        result: dict[str, Any] = response.json()
        return result

    def update(
        self,
        entity_type: EntityType,
        entity_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        """Apply a partial update to an entity.

        Raises:
            NotFoundError: If the entity does not exist.
        """
        body = {k: v for k, v in payload.items() if k != "id"}
        response = self._request(
            "PATCH", f"{self._path(entity_type)}/{entity_id}", json=body
        )
        result: dict[str, Any] = response.json()
        return result

    def delete(self, entity_type: EntityType, entity_id: str) -> None:
        """Delete an entity.

        Raises:
            NotFoundError: If the entity does not exist.
        """
        self._request("DELETE", f"{self._path(entity_type)}/{entity_id}")
