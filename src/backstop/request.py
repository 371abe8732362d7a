import typing as t

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from backstop.exceptions import RequestValidationError

HttpMethod = t.Literal["GET", "POST", "PUT", "PATCH", "DELETE"]
HTTP_METHODS: tuple[str, ...] = t.get_args(HttpMethod)


class RequestDescriptor(BaseModel):
    """
    Immutable description of one logical HTTP exchange.

    Stages that need to alter a descriptor (token attach, user middleware)
    return a modified copy.
    """

    model_config = ConfigDict(frozen=True)

    method: HttpMethod
    path: str
    headers: dict[str, str] = Field(default_factory=dict)
    body: t.Any | None = None
    params: dict[str, t.Any] | None = None
    explicit_timeout_ms: int | None = Field(default=None, gt=0)

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, value: t.Any) -> t.Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("path")
    @classmethod
    def check_path(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("path cannot be empty")
        return value

    @classmethod
    def build(cls, method: str, path: str, **kwargs: t.Any) -> "RequestDescriptor":
        """
        Build a descriptor, surfacing invalid input as ``RequestValidationError``.

        Parameters
        ----------
        method : str
            HTTP verb, case-insensitive.
        path : str
            Request path relative to the API base URL.
        **kwargs : typing.Any
            Remaining descriptor fields.

        Returns
        -------
        RequestDescriptor
            Validated descriptor.
        """
        try:
            return cls(method=method, path=path, **kwargs)
        except pydantic.ValidationError as error:
            errors = [
                f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}"
                for item in error.errors()
            ]
            raise RequestValidationError(
                f"Invalid request: {', '.join(errors)}", errors=errors
            ) from error

    def with_header(self, name: str, value: str) -> "RequestDescriptor":
        return self.model_copy(update={"headers": {**self.headers, name: value}})

    def describe(self) -> str:
        return f"{self.method} {self.path}"
