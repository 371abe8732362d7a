from .batch import BatchExecutor as BatchExecutor
from .batch import BatchResult as BatchResult
from .cache import ResponseCache as ResponseCache
from .cancellation import CancelToken as CancelToken
from .client import AdminClient as AdminClient
from .config import ClientSettings as ClientSettings
from .dispatcher import Dispatcher as Dispatcher
from .events import AccessDenied as AccessDenied
from .events import AuthLogout as AuthLogout
from .events import EventBus as EventBus
from .events import NetworkFailure as NetworkFailure
from .events import ServerFailure as ServerFailure
from .request import RequestDescriptor as RequestDescriptor
from .retry import RetryEngine as RetryEngine
from .retry import RetryPolicy as RetryPolicy
from .timeouts import TimeoutPolicy as TimeoutPolicy
from .tokens import TokenStore as TokenStore

__all__ = [
    "AdminClient",
    "ClientSettings",
    "Dispatcher",
    "RequestDescriptor",
    "TimeoutPolicy",
    "RetryEngine",
    "RetryPolicy",
    "TokenStore",
    "EventBus",
    "AuthLogout",
    "AccessDenied",
    "NetworkFailure",
    "ServerFailure",
    "ResponseCache",
    "BatchExecutor",
    "BatchResult",
    "CancelToken",
]
