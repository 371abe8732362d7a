"""
CRUD service over one REST resource, backed by the dispatcher and the shared cache.
"""

from __future__ import annotations

import typing as t

import structlog

from backstop.cache import ResponseCache
from backstop.dispatcher import Dispatcher
from backstop.exceptions import RequestValidationError

log = structlog.get_logger(__name__)

MAX_PAGE_LIMIT = 100


def validate_id(value: t.Any, *, field_name: str = "id") -> int:
    """
    Validate a resource identifier before any request is built.

    Parameters
    ----------
    value : typing.Any
        Identifier as received from the caller, int or numeric string.
    field_name : str, optional
        Name used in the error message.

    Returns
    -------
    int
        Positive integer identifier.

    Raises
    ------
    RequestValidationError
        When the identifier is missing or not a positive integer.
    """
    if value is None or value == "" or isinstance(value, bool):
        raise RequestValidationError(f"{field_name} is required")
    try:
        number = int(str(value).strip())
    except ValueError:
        raise RequestValidationError(f"{field_name} must be a positive integer") from None
    if number <= 0:
        raise RequestValidationError(f"{field_name} must be a positive integer")
    return number


def validate_query_params(params: t.Mapping[str, t.Any]) -> list[str]:
    errors: list[str] = []
    page = params.get("page")
    if page is not None and not _is_int_at_least(page, 1):
        errors.append("page must be a number greater than 0")
    limit = params.get("limit")
    if limit is not None and not (
        _is_int_at_least(limit, 1) and int(limit) <= MAX_PAGE_LIMIT
    ):
        errors.append(f"limit must be a number between 1 and {MAX_PAGE_LIMIT}")
    search = params.get("search")
    if search is not None and not isinstance(search, str):
        errors.append("search must be a string")
    return errors


def clean_query_params(params: t.Mapping[str, t.Any]) -> dict[str, t.Any]:
    cleaned: dict[str, t.Any] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        if key == "status" and value == "all":
            continue
        cleaned[key] = value
    return cleaned


def _is_int_at_least(value: t.Any, minimum: int) -> bool:
    if isinstance(value, bool):
        return False
    try:
        return int(value) >= minimum
    except (TypeError, ValueError):
        return False


class ResourceService:
    """
    List, read and mutate one resource of the admin API.

    Reads by id and the active-items list are cached. Every successful
    create, update, toggle or delete clears the entire cache, not only this
    resource's keys.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        cache: ResponseCache[t.Any],
        resource: str,
        *,
        path: str | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._cache = cache
        self.resource = resource.strip("/")
        self.path = path or f"/{self.resource}"

    def cache_key(self, resource_id: int) -> str:
        return f"{self.resource}_{resource_id}"

    async def list(self, **params: t.Any) -> t.Any:
        errors = validate_query_params(params)
        if errors:
            raise RequestValidationError(f"Invalid parameters: {', '.join(errors)}", errors=errors)
        cleaned = clean_query_params(params)
        return await self._dispatcher.get(self.path, params=cleaned or None)

    async def get(self, resource_id: t.Any) -> t.Any:
        """
        Read one item, serving it from the cache while fresh.

        Parameters
        ----------
        resource_id : typing.Any
            Positive integer id.

        Returns
        -------
        typing.Any
            Decoded response body.
        """
        valid_id = validate_id(resource_id)
        key = self.cache_key(valid_id)
        cached = self._cache.get(key)
        if cached is not None:
            log.debug(event="Served from cache", resource=self.resource, id=valid_id)
            return cached
        item = await self._dispatcher.get(f"{self.path}/{valid_id}")
        self._cache.set(key, item)
        return item

    async def active(self) -> t.Any:
        key = f"{self.resource}_active"
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        items = await self._dispatcher.get(f"{self.path}/active")
        self._cache.set(key, items)
        return items

    async def create(self, data: t.Mapping[str, t.Any]) -> t.Any:
        created = await self._dispatcher.post(self.path, dict(data))
        self._invalidate(operation="create")
        return created

    async def update(self, resource_id: t.Any, data: t.Mapping[str, t.Any]) -> t.Any:
        valid_id = validate_id(resource_id)
        updated = await self._dispatcher.put(f"{self.path}/{valid_id}", dict(data))
        self._invalidate(operation="update")
        return updated

    async def toggle(self, resource_id: t.Any) -> t.Any:
        valid_id = validate_id(resource_id)
        toggled = await self._dispatcher.patch(f"{self.path}/{valid_id}/toggle")
        self._invalidate(operation="toggle")
        return toggled

    async def delete(self, resource_id: t.Any) -> t.Any:
        valid_id = validate_id(resource_id)
        deleted = await self._dispatcher.delete(f"{self.path}/{valid_id}")
        self._invalidate(operation="delete")
        return deleted

    def _invalidate(self, *, operation: str) -> None:
        log.debug(event="Mutation succeeded, clearing cache", resource=self.resource, operation=operation)
        self._cache.clear()
