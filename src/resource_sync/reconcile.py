import typing

import structlog

from .exceptions import UnknownRecordTypeError
from .interfaces import RecordTypeResolver, Store
from .models import CORRELATION_KEY, FetchedData, RecordType
from .types import JSONObject, StoreKey
from .utils import camelize_data

logger = structlog.get_logger(__name__)

IDENTITY_FIELDS = ("_id", "id")
REVISION_FIELD = "_rev"
WIRE_REVISION_FIELD = "rev"


class ReconciliationFold:
    """
    Folds data hashes received from a backend into the store.

    Each item has its provider identity (``_id`` or ``id``) moved to the primary
    key field of its record type and its revision (``rev``) moved to ``_rev``,
    its keys converted to the local naming convention, and its record type
    resolved from its ``type`` tag.  Items whose type cannot be resolved are
    dropped.  The surviving items are handed to the store in a single call.

    :param Store store: the store to fold into.
    :param RecordTypeResolver resolver: resolves ``type`` tags to record types.
    """

    store: Store
    resolver: RecordTypeResolver

    def resolve_record_type(
        self, data: JSONObject, default_type: typing.Optional[RecordType]
    ) -> typing.Optional[RecordType]:
        type_tag = data.get("type")
        if not type_tag:
            if default_type is None:
                logger.warning("skipping_undefined_record_type", type_tag=None)
            return default_type
        try:
            return self.resolver.resolve(str(type_tag))
        except UnknownRecordTypeError as e:
            logger.warning(
                "skipping_undefined_record_type", type_tag=type_tag, error=e.message
            )
            return None

    def normalize(
        self, data: JSONObject, default_type: typing.Optional[RecordType]
    ) -> typing.Optional[FetchedData]:
        item = dict(data)
        item.pop(CORRELATION_KEY, None)

        identity: typing.Any = None
        has_identity = False
        for field in IDENTITY_FIELDS:
            if field in item:
                value = item.pop(field)
                if not has_identity:
                    identity, has_identity = value, True

        revision = item.pop(WIRE_REVISION_FIELD, None)
        if REVISION_FIELD in item:
            revision = item.pop(REVISION_FIELD)

        record_type = self.resolve_record_type(item, default_type)
        if record_type is None:
            return None

        normalized = camelize_data(item)
        if has_identity:
            normalized[record_type.primary_key] = identity
        if revision is not None:
            normalized[REVISION_FIELD] = revision
        return FetchedData(record_type=record_type, data=normalized)

    def __call__(
        self,
        data_items: typing.Iterable[JSONObject],
        default_type: typing.Optional[RecordType],
        cache_code: typing.Optional[str],
        authoritative: bool,
    ) -> typing.Sequence[StoreKey]:
        """
        :param Iterable[JSONObject] data_items: the data hashes as received.
        :param Optional[RecordType] default_type: the record type for items without a ``type`` tag.
        :param Optional[str] cache_code: the concurrency token of the response.
        :param bool authoritative: True if the items are complete copies of the records.
        :return: The store keys the store reports for the folded items.
        """
        items = []
        for data in data_items:
            fetched = self.normalize(data, default_type)
            if fetched is not None:
                items.append(fetched)
        return self.store.bulk_apply_fetched_data(items, default_type, cache_code, authoritative)

    def __init__(self, store: Store, resolver: RecordTypeResolver) -> None:
        self.store = store
        self.resolver = resolver
