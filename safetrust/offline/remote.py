"""HTTP client for the Safety Management API used to replay queued actions."""

from typing import Any, Awaitable, Callable

import httpx

from safetrust.core.config import settings
from safetrust.core.logging import get_logger
from safetrust.offline.models import ActionType, EntityType

logger = get_logger(__name__)

RemoteOperation = Callable[[str | None, dict[str, Any]], Awaitable[Any]]

_COLLECTIONS = {
    EntityType.DOCUMENTS: "/sms/documents",
    EntityType.INCIDENTS: "/sms/incidents",
    EntityType.TRAININGS: "/sms/trainings",
    EntityType.WORKFLOW_TASKS: "/sms/workflows/tasks",
}


class UnsupportedActionError(ValueError):
    """Raised when no remote operation exists for an (entity, action) pair."""

    def __init__(self, entity: str, action_type: str):
        self.entity = entity
        self.action_type = action_type
        super().__init__(f"Unsupported {entity} action: {action_type}")


def _unwrap(payload: Any) -> Any:
    """API responses wrap results as {"success": ..., "data": ...}."""
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


class RemoteAPI:
    """
    Async client for the entity endpoints.

    One coroutine per (entity, action) pair; ``operation_for`` resolves the
    coroutine the sync cycle should call for a queued action.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.OFFLINE_API_BASE_URL).rstrip("/"),
            headers=headers,
            timeout=timeout if timeout is not None else settings.OFFLINE_API_TIMEOUT_SECONDS,
            transport=transport,
        )
        self._operations: dict[tuple[EntityType, ActionType], RemoteOperation] = {
            (EntityType.DOCUMENTS, ActionType.CREATE): self.create_document,
            (EntityType.DOCUMENTS, ActionType.UPDATE): self.update_document,
            (EntityType.DOCUMENTS, ActionType.DELETE): self.delete_document,
            (EntityType.INCIDENTS, ActionType.CREATE): self.create_incident,
            (EntityType.INCIDENTS, ActionType.UPDATE): self.update_incident,
            (EntityType.INCIDENTS, ActionType.DELETE): self.delete_incident,
            (EntityType.TRAININGS, ActionType.CREATE): self.create_training,
            (EntityType.TRAININGS, ActionType.UPDATE): self.update_training,
            (EntityType.TRAININGS, ActionType.DELETE): self.delete_training,
            (EntityType.WORKFLOW_TASKS, ActionType.UPDATE): self.update_task_status,
        }

    def set_token(self, token: str | None) -> None:
        if token:
            self._client.headers["Authorization"] = f"Bearer {token}"
        else:
            self._client.headers.pop("Authorization", None)

    def operation_for(self, entity: EntityType | str, action_type: ActionType | str) -> RemoteOperation:
        try:
            key = (EntityType(entity), ActionType(action_type))
        except ValueError:
            raise UnsupportedActionError(str(entity), str(action_type))
        operation = self._operations.get(key)
        if operation is None:
            raise UnsupportedActionError(key[0].value, key[1].value)
        return operation

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, json: dict[str, Any] | None = None, params=None) -> Any:
        response = await self._client.request(method, url, json=json, params=params)
        response.raise_for_status()
        if not response.content:
            return None
        return _unwrap(response.json())

    @staticmethod
    def _item_url(collection: str, entity_id: str | None) -> str:
        if not entity_id:
            raise ValueError(f"An entity id is required for {collection}")
        return f"{collection}/{entity_id}"

    # Collection helpers

    async def _create(self, entity: EntityType, data: dict[str, Any]) -> Any:
        return await self._request("POST", _COLLECTIONS[entity], json=data)

    async def _update(self, entity: EntityType, entity_id: str | None, data: dict[str, Any]) -> Any:
        return await self._request("PUT", self._item_url(_COLLECTIONS[entity], entity_id), json=data)

    async def _delete(self, entity: EntityType, entity_id: str | None) -> Any:
        return await self._request("DELETE", self._item_url(_COLLECTIONS[entity], entity_id))

    # Documents

    async def create_document(self, entity_id: str | None, data: dict[str, Any]) -> Any:
        return await self._create(EntityType.DOCUMENTS, data)

    async def update_document(self, entity_id: str | None, data: dict[str, Any]) -> Any:
        return await self._update(EntityType.DOCUMENTS, entity_id, data)

    async def delete_document(self, entity_id: str | None, data: dict[str, Any]) -> Any:
        return await self._delete(EntityType.DOCUMENTS, entity_id)

    # Incidents

    async def create_incident(self, entity_id: str | None, data: dict[str, Any]) -> Any:
        return await self._create(EntityType.INCIDENTS, data)

    async def update_incident(self, entity_id: str | None, data: dict[str, Any]) -> Any:
        return await self._update(EntityType.INCIDENTS, entity_id, data)

    async def delete_incident(self, entity_id: str | None, data: dict[str, Any]) -> Any:
        return await self._delete(EntityType.INCIDENTS, entity_id)

    # Trainings

    async def create_training(self, entity_id: str | None, data: dict[str, Any]) -> Any:
        return await self._create(EntityType.TRAININGS, data)

    async def update_training(self, entity_id: str | None, data: dict[str, Any]) -> Any:
        return await self._update(EntityType.TRAININGS, entity_id, data)

    async def delete_training(self, entity_id: str | None, data: dict[str, Any]) -> Any:
        return await self._delete(EntityType.TRAININGS, entity_id)

    # Workflow tasks

    async def update_task_status(self, entity_id: str | None, data: dict[str, Any]) -> Any:
        url = self._item_url(_COLLECTIONS[EntityType.WORKFLOW_TASKS], entity_id)
        return await self._request("PATCH", url, json={"status": data.get("status")})

    # Listings for cache refresh

    async def list_entities(self, entity: EntityType | str, params: dict[str, Any] | None = None) -> list[dict]:
        """GET the collection for an entity type. Returns the item list."""
        result = await self._request("GET", _COLLECTIONS[EntityType(entity)], params=params)
        if isinstance(result, dict):
            # Paginated responses nest the rows under "items"
            result = result.get("items", [])
        return list(result or [])
