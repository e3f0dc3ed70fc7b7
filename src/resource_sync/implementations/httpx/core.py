import collections
import typing

import httpx
import structlog

from ...deferred import Deferred, DeferredState
from ...interfaces import Transport
from ...models import RequestDescriptor, Response

logger = structlog.get_logger(__name__)


class HTTPXTransport(Transport):
    """
    A :py:class:`Transport` backed by a synchronous :py:class:`httpx.Client`.

    Issued requests wait in a queue until :py:meth:`flush` sends them, one at
    a time and in the order they were issued.  Responses with a status outside
    the 2xx range (save 304) reject the handle, as do transport errors, which
    yield a :py:class:`Response` with a status code of 0 and ``error`` set.

    :param httpx.Client client: the client requests are sent with.  Relative
                                URLs are resolved against its ``base_url``.
    """

    client: httpx.Client
    _queue: typing.Deque[Deferred]

    def issue(self, request: RequestDescriptor) -> Deferred:
        handle = Deferred(request)
        self._queue.append(handle)
        return handle

    def cancel(self, handle: Deferred) -> bool:
        try:
            self._queue.remove(handle)
        except ValueError:
            return False
        handle.cancel()
        return True

    def _send(self, handle: Deferred) -> Response:
        request = handle.request
        headers = dict(request.headers)
        if request.content_type is not None:
            headers["Content-Type"] = request.content_type
        content = request.body.encode("utf-8") if request.body is not None else None
        try:
            resp = self.client.request(
                request.method.upper(), request.url, headers=headers, content=content
            )
        except httpx.HTTPError as e:
            logger.warning("transport_error", url=request.url, error=str(e))
            return Response(url=request.url, status_code=0, error=e)
        return Response(
            url=str(resp.url),
            status_code=resp.status_code,
            headers=dict(resp.headers),
            text=resp.text,
        )

    def flush(self) -> int:
        """
        Sends the queued requests, including those issued by response handlers
        while flushing.

        :return: The number of requests sent.
        """
        sent = 0
        while self._queue:
            handle = self._queue.popleft()
            if handle.state is not DeferredState.QUEUED:
                continue
            handle.mark_sent()
            response = self._send(handle)
            sent += 1
            if response.ok:
                handle.resolve(response)
            else:
                handle.reject(response)
        return sent

    def __len__(self) -> int:
        return len(self._queue)

    def __init__(self, client: httpx.Client) -> None:
        self.client = client
        self._queue = collections.deque()
