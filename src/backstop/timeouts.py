"""
Per-operation timeout resolution.
"""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, PositiveInt

from backstop.request import RequestDescriptor


class TimeoutCategory(StrEnum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    UPLOAD = "upload"
    REPORT = "report"
    DEFAULT = "default"


class TimeoutTable(BaseModel):
    """
    Timeout, in milliseconds, for each operation category.
    """

    model_config = ConfigDict(frozen=True)

    read: PositiveInt = 8_000
    write: PositiveInt = 15_000
    delete: PositiveInt = 10_000
    upload: PositiveInt = 60_000
    report: PositiveInt = 120_000
    default: PositiveInt = 10_000

    def for_category(self, category: TimeoutCategory) -> int:
        return getattr(self, category.value)


_UPLOAD_MARKERS = ("upload", "file")
_REPORT_MARKERS = ("report", "export")
_METHOD_CATEGORIES: dict[str, TimeoutCategory] = {
    "GET": TimeoutCategory.READ,
    "POST": TimeoutCategory.WRITE,
    "PUT": TimeoutCategory.WRITE,
    "PATCH": TimeoutCategory.WRITE,
    "DELETE": TimeoutCategory.DELETE,
}


class TimeoutPolicy:
    """
    Map a request descriptor to the timeout it should run with.

    Path markers take precedence over the HTTP verb: anything touching uploads
    or files gets the upload budget, reports and exports get the report budget.
    """

    def __init__(self, table: TimeoutTable | None = None) -> None:
        self.table = table or TimeoutTable()

    def categorize(self, descriptor: RequestDescriptor) -> TimeoutCategory:
        path = descriptor.path.lower()
        if any(marker in path for marker in _UPLOAD_MARKERS):
            return TimeoutCategory.UPLOAD
        if any(marker in path for marker in _REPORT_MARKERS):
            return TimeoutCategory.REPORT
        return _METHOD_CATEGORIES.get(descriptor.method.upper(), TimeoutCategory.DEFAULT)

    def resolve(self, descriptor: RequestDescriptor) -> int:
        """
        Resolve the timeout for ``descriptor``.

        Parameters
        ----------
        descriptor : RequestDescriptor
            Request about to be dispatched.

        Returns
        -------
        int
            Timeout in milliseconds. ``explicit_timeout_ms`` always wins.
        """
        if descriptor.explicit_timeout_ms is not None:
            return descriptor.explicit_timeout_ms
        return self.table.for_category(self.categorize(descriptor))
