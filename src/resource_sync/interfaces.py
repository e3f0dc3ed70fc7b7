"""
This module contains the interface definitions of the collaborators the
synchronization layer drives: the local store, the HTTP transport, and
the record type resolver.
"""
import abc
import collections
import typing

from .deferred import Deferred
from .models import WILDCARD_RESOURCE, FetchedData, RecordType, RequestDescriptor
from .types import JSONObject, MutableJSONObject, StoreKey


class Store(metaclass=abc.ABCMeta):
    """
    A :py:class:`Store` is the local object store records are reconciled into.
    Store keys are opaque to this library; a store must never reuse a key
    once the record it denotes has been removed.
    """

    @abc.abstractmethod
    def read_record_data(self, store_key: StoreKey) -> MutableJSONObject:
        """
        Returns a copy of the data hash of the record, in the local naming convention.
        """
        ...  # pragma: nocover

    @abc.abstractmethod
    def record_type_of(self, store_key: StoreKey) -> RecordType:
        ...  # pragma: nocover

    @abc.abstractmethod
    def id_for(self, store_key: StoreKey) -> typing.Any:
        """
        Returns the value of the primary key of the record, or None if it has none yet.
        """
        ...  # pragma: nocover

    @abc.abstractmethod
    def is_new_record(self, store_key: StoreKey) -> bool:
        """
        Returns True if the record has never been persisted on a backend.
        """
        ...  # pragma: nocover

    def cache_code_of(self, store_key: StoreKey) -> typing.Optional[str]:
        """
        Returns the concurrency token the record was last fetched with, if any.
        """
        return None

    @abc.abstractmethod
    def resolve_record_ref(self, guid: typing.Any, record_type: RecordType) -> StoreKey:
        """
        Returns the store key of the record of ``record_type`` whose primary key is ``guid``.
        """
        ...  # pragma: nocover

    @abc.abstractmethod
    def apply_fetched_data(
        self, store_key: StoreKey, data: JSONObject, identity: typing.Any
    ) -> None:
        """
        Merges ``data`` into the record, binds the record to ``identity``
        and clears its "new record" flag.
        """
        ...  # pragma: nocover

    @abc.abstractmethod
    def bulk_apply_fetched_data(
        self,
        items: typing.Sequence[FetchedData],
        default_type: typing.Optional[RecordType],
        cache_code: typing.Optional[str],
        authoritative: bool,
    ) -> typing.Sequence[StoreKey]:
        """
        Pushes a batch of data hashes into the store as one change.

        :param Sequence[FetchedData] items: the normalized data hashes.
        :param Optional[RecordType] default_type: the record type the batch was requested for.
        :param Optional[str] cache_code: the concurrency token the batch came with.
        :param bool authoritative: True if the data hashes are complete copies of the records.
        :return: The store keys of the updated records, in the order of ``items``.
        """
        ...  # pragma: nocover

    @abc.abstractmethod
    def remove_records(self, store_keys: typing.Sequence[StoreKey]) -> None:
        ...  # pragma: nocover

    def data_source_did_error(self, store_key: StoreKey, error: Exception) -> None:
        """
        Called when an operation on the record failed on the backend.
        """

    def group_by_resource(
        self, store_keys: typing.Iterable[StoreKey]
    ) -> typing.Mapping[str, typing.Sequence[StoreKey]]:
        """
        Partitions the records by the resource URL of their record type.
        Records without a resource end up under :py:data:`WILDCARD_RESOURCE`.
        """
        groups: typing.Dict[str, typing.List[StoreKey]] = collections.OrderedDict()
        for store_key in store_keys:
            resource = self.record_type_of(store_key).resource_url or WILDCARD_RESOURCE
            groups.setdefault(resource, []).append(store_key)
        return groups


class Transport(metaclass=abc.ABCMeta):
    """
    A :py:class:`Transport` carries requests to the backend.

    :py:meth:`issue` only enqueues the request; the returned :py:class:`Deferred`
    must never be settled from within :py:meth:`issue` itself.
    """

    @abc.abstractmethod
    def issue(self, request: RequestDescriptor) -> Deferred:
        ...  # pragma: nocover

    @abc.abstractmethod
    def cancel(self, handle: Deferred) -> bool:
        """
        Removes the request from the outstanding queue.

        :param Deferred handle: the handle :py:meth:`issue` returned.
        :return: True if the request was withdrawn before being sent, False otherwise.
        """
        ...  # pragma: nocover


class RecordTypeResolver(metaclass=abc.ABCMeta):
    @abc.abstractmethod
    def resolve(self, type_tag: str) -> RecordType:
        """
        Resolves a type tag found in a wire payload to a record type.

        :raises UnknownRecordTypeError: if no registered type matches.
        """
        ...  # pragma: nocover

    @abc.abstractmethod
    def register(self, record_type: RecordType) -> RecordType:
        ...  # pragma: nocover
