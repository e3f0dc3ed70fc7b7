import enum
import typing

from .models import RequestDescriptor, Response


class DeferredState(enum.Enum):
    QUEUED = "queued"
    SENT = "sent"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


Callback = typing.Callable[[Response], None]


class Deferred:
    """
    A :py:class:`Deferred` stands for the eventual response to an issued request.
    Transports hand one out from :py:meth:`Transport.issue` and settle it later
    by calling :py:meth:`resolve` or :py:meth:`reject`, which fires the callbacks
    registered so far.  Callbacks registered after settlement fire immediately.

    A cancelled deferred never fires any callback.

    :param RequestDescriptor request: the request this deferred stands for.
    """

    request: RequestDescriptor
    state: DeferredState
    response: typing.Optional[Response] = None
    _success_callbacks: typing.List[Callback]
    _failure_callbacks: typing.List[Callback]

    @property
    def settled(self) -> bool:
        return self.state in (
            DeferredState.SUCCEEDED,
            DeferredState.FAILED,
            DeferredState.CANCELLED,
        )

    def on_success(self, callback: Callback) -> "Deferred":
        if self.state is DeferredState.SUCCEEDED:
            callback(typing.cast(Response, self.response))
        elif not self.settled:
            self._success_callbacks.append(callback)
        return self

    def on_failure(self, callback: Callback) -> "Deferred":
        if self.state is DeferredState.FAILED:
            callback(typing.cast(Response, self.response))
        elif not self.settled:
            self._failure_callbacks.append(callback)
        return self

    def response_header(self, name: str) -> typing.Optional[str]:
        if self.response is None:
            return None
        return self.response.header(name)

    def response_body(self) -> typing.Optional[str]:
        if self.response is None:
            return None
        return self.response.text

    def mark_sent(self) -> None:
        if self.state is DeferredState.QUEUED:
            self.state = DeferredState.SENT

    def _settle(self, state: DeferredState, response: Response) -> None:
        if self.settled:
            return
        callbacks = (
            self._success_callbacks if state is DeferredState.SUCCEEDED else self._failure_callbacks
        )
        self.state = state
        self.response = response
        self._success_callbacks = []
        self._failure_callbacks = []
        for callback in callbacks:
            callback(response)

    def resolve(self, response: Response) -> None:
        self._settle(DeferredState.SUCCEEDED, response)

    def reject(self, response: Response) -> None:
        self._settle(DeferredState.FAILED, response)

    def cancel(self) -> None:
        if self.settled:
            return
        self.state = DeferredState.CANCELLED
        self._success_callbacks = []
        self._failure_callbacks = []

    def __repr__(self) -> str:
        request = self.request
        return f"{type(self).__name__}({request.method.upper()} {request.url}, {self.state.value})"

    def __init__(self, request: RequestDescriptor) -> None:
        self.request = request
        self.state = DeferredState.QUEUED
        self._success_callbacks = []
        self._failure_callbacks = []
