import abc
import typing

from .types import StoreKey
from .utils import english_enumerate

if typing.TYPE_CHECKING:
    from .models import Response  # noqa: F401


class ResourceSyncException(Exception, metaclass=abc.ABCMeta):
    pass


class InvalidDeclarationError(ResourceSyncException):
    message: str

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class UnknownRecordTypeError(ResourceSyncException):
    type_tag: str
    candidates: typing.Sequence[str]

    @property
    def message(self) -> str:
        if self.candidates:
            return f'unknown record type "{self.type_tag}" (tried {english_enumerate(self.candidates)})'
        else:
            return f'unknown record type "{self.type_tag}"'

    def __str__(self) -> str:
        return self.message

    def __init__(self, type_tag: str, candidates: typing.Sequence[str] = ()):
        super().__init__(type_tag)
        self.type_tag = type_tag
        self.candidates = candidates


class SyncError(ResourceSyncException, metaclass=abc.ABCMeta):
    """
    The base class for errors that are handed to failure continuations
    instead of being raised to the caller.
    """

    @property
    @abc.abstractmethod
    def message(self) -> str:
        ...  # pragma: nocover

    def __str__(self) -> str:
        return self.message


class RequestFailedError(SyncError):
    response: "Response"

    @property
    def message(self) -> str:
        if self.response.error is not None:
            return f"request to {self.response.url} failed: {self.response.error}"
        return f"request to {self.response.url} failed with status {self.response.status_code}"

    def __init__(self, response: "Response"):
        super().__init__(response)
        self.response = response


class MalformedResponseError(SyncError):
    response: typing.Optional["Response"]
    detail: str

    @property
    def message(self) -> str:
        return f"malformed response payload: {self.detail}"

    def __init__(self, response: typing.Optional["Response"], detail: str):
        super().__init__(detail)
        self.response = response
        self.detail = detail


class CorrelationError(SyncError):
    detail: str

    @property
    def message(self) -> str:
        return f"bulk response does not correlate with the submitted documents: {self.detail}"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class BulkItemError(SyncError):
    store_key: StoreKey
    error: str
    reason: typing.Optional[str]

    @property
    def message(self) -> str:
        message = f"document for record {self.store_key!r} was rejected: {self.error}"
        if self.reason:
            message += f" ({self.reason})"
        return message

    def __init__(self, store_key: StoreKey, error: str, reason: typing.Optional[str] = None):
        super().__init__(store_key, error)
        self.store_key = store_key
        self.error = error
        self.reason = reason
