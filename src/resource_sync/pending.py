import collections
import typing

import structlog

from .deferred import Deferred
from .interfaces import Transport
from .types import StoreKey

logger = structlog.get_logger(__name__)


def request_id_for(store_key: StoreKey) -> str:
    """
    Derives the registry key of a record from its store key.  The same
    store key always yields the same request id.
    """
    return f"record-{store_key}"


class PendingRequestRegistry:
    """
    Tracks the in-flight request of every record, keyed by :py:func:`request_id_for`.

    There is at most one entry per key.  Registering a second request for a key
    supersedes the first one for that key only.  One request may be registered
    under several keys (bulk writes); it is withdrawn from the transport once
    none of its keys refer to it anymore, and its response is only applied to
    the keys that still do.
    """

    transport: Transport
    _entries: typing.Dict[str, Deferred]

    def register(self, store_keys: typing.Iterable[StoreKey], handle: Deferred) -> None:
        for store_key in store_keys:
            key = request_id_for(store_key)
            prev = self._entries.get(key)
            if prev is not None and prev is not handle:
                logger.info("request_superseded", request_id=key, request=repr(prev))
                self._release(key, prev)
            self._entries[key] = handle

    def settle(
        self, store_keys: typing.Iterable[StoreKey], handle: Deferred
    ) -> typing.Sequence[StoreKey]:
        """
        Removes the entries of a completed request.

        :return: The store keys for which ``handle`` was still the active request.
                 Keys that were cancelled or superseded meanwhile are left out.
        """
        active = []
        for store_key in store_keys:
            key = request_id_for(store_key)
            if self._entries.get(key) is handle:
                del self._entries[key]
                active.append(store_key)
        return active

    def cancel(self, store_keys: typing.Iterable[StoreKey]) -> typing.Sequence[str]:
        """
        Cancels the requests of the given records.  Cancellation is best-effort;
        a request that already left the transport queue cannot be recalled,
        but its response will not be applied to these records.

        :return: The request ids that had an entry.
        """
        cancelled = []
        for store_key in store_keys:
            key = request_id_for(store_key)
            handle = self._entries.get(key)
            if handle is None:
                continue
            cancelled.append(key)
            self._release(key, handle)
        return cancelled

    def _release(self, key: str, handle: Deferred) -> None:
        del self._entries[key]
        if not any(v is handle for v in self._entries.values()):
            self.transport.cancel(handle)

    def get(self, store_key: StoreKey) -> typing.Optional[Deferred]:
        return self._entries.get(request_id_for(store_key))

    def __contains__(self, store_key: StoreKey) -> bool:
        return request_id_for(store_key) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __init__(self, transport: Transport) -> None:
        self.transport = transport
        self._entries = collections.OrderedDict()
