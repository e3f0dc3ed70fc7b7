"""
CouchDB support.

:py:class:`CouchdbServer` runs the record lifecycle against a CouchDB
database: lists go through views, and writes go through the
``_bulk_docs`` endpoint in a single batch per database.  CouchDB answers a
bulk write with one result per submitted document, in submission order, so
results are correlated by position; the server checks that the results
line up before applying any of them.

:py:class:`CouchdbDataSource` offers the single-document API on top of it.
"""
import collections.abc
import json
import typing

import structlog

from .deferred import Deferred
from .exceptions import (
    BulkItemError,
    CorrelationError,
    InvalidDeclarationError,
    MalformedResponseError,
    RequestFailedError,
)
from .interfaces import RecordTypeResolver, Store, Transport
from .models import (
    WILDCARD_RESOURCE,
    RecordType,
    RequestContext,
    RequestDescriptor,
    Response,
    ServerConfig,
)
from .pending import PendingRequestRegistry
from .reconcile import REVISION_FIELD
from .server import (
    CONTROL_OPTIONS,
    Handler,
    RequestControls,
    Server,
    append_query,
    decode_json,
    expect_mappings,
    guarded,
    report_failure,
)
from .types import JSONObject, StoreKey
from .utils import decamelize_data, to_query_string

logger = structlog.get_logger(__name__)

JSON_CONTENT_TYPE = "application/json"

BULK_DOCS_PATH = "_bulk_docs"
TEMP_VIEW_PATH = "_temp_view"


def temp_view_map_function(type_name: str) -> str:
    return f"function(doc) {{ if (doc.type == {json.dumps(type_name)}) {{ emit(doc._id, doc); }} }}"


def design_view_path(design: str, view: str) -> str:
    return f"_design/{design}/_view/{view}"


class CouchdbServer(Server):
    """
    :param Transport transport: carries the requests.
    :param Store store: the local store.

    Records are bound to a database through the ``resource_url`` of their
    record type.  Documents carry their record type name in ``type``.
    """

    create_action = BULK_DOCS_PATH
    commit_action = BULK_DOCS_PATH
    destroy_action = BULK_DOCS_PATH
    refresh_action = ""

    control_options = {**CONTROL_OPTIONS, "body": "body"}

    pending: PendingRequestRegistry

    def build_url(
        self, resource: str, action: str, ids: typing.Optional[typing.Sequence[typing.Any]]
    ) -> str:
        parts = [resource]
        if ids and len(ids) == 1:
            parts.append(str(ids[0]))
        if action:
            parts.append(action)
        return "/".join(parts)

    def build_request_descriptor(
        self,
        method: str,
        url: str,
        payload: typing.Mapping[str, typing.Any],
        controls: RequestControls,
    ) -> RequestDescriptor:
        body = controls.body
        if body is not None and not isinstance(body, str):
            body = json.dumps(body)
        return RequestDescriptor(
            method=method,
            url=append_query(url, to_query_string(payload)),
            headers=self.build_headers(controls),
            body=body,
            content_type=JSON_CONTENT_TYPE if body is not None else None,
        )

    def track(self, context: RequestContext) -> None:
        if context.handle is not None:
            self.pending.register(context.records, context.handle)

    def settle(self, context: RequestContext) -> typing.Sequence[StoreKey]:
        return self.pending.settle(context.records, typing.cast(Deferred, context.handle))

    def cancel(self, store_keys: typing.Iterable[StoreKey]) -> typing.Sequence[str]:
        """
        Cancels the outstanding requests of the given records.  A response that
        arrives anyway is not applied to them.

        :return: The request ids that were pending.
        """
        return self.pending.cancel(store_keys)

    # ..........................................
    # LIST

    def list_for(  # type: ignore[override]
        self,
        record_type: RecordType,
        *,
        view: typing.Optional[str] = None,
        conditions: typing.Optional[typing.Mapping[str, typing.Any]] = None,
        cache_code: typing.Optional[str] = None,
        on_success: typing.Optional[typing.Callable[..., None]] = None,
        on_failure: typing.Optional[typing.Callable[..., None]] = None,
    ) -> typing.Optional[Deferred]:
        """
        Queries the documents of ``record_type`` through ``view`` (a path relative
        to the database), the default view of the record type, or its design view.
        Without any of these a temporary view selecting the documents by ``type``
        is run instead.  ``conditions`` become view query parameters.
        """
        resource = record_type.resource_url
        if not resource:
            return None

        if view is None:
            view = record_type.default_view
        if view is None and record_type.couch_design and record_type.couch_view:
            view = design_view_path(record_type.couch_design, record_type.couch_view)

        params: typing.Dict[str, typing.Any] = dict(decamelize_data(conditions or {}))
        params.update(
            {
                "_on_success": self._list_success,
                "_on_not_modified": self._list_not_modified,
                "_on_failure": self._list_failure,
            }
        )
        if cache_code:
            params["cache_code"] = cache_code

        if view is not None:
            method = "get"
            params["url"] = f"{resource}/{view}"
        else:
            method = "post"
            params["url"] = f"{resource}/{TEMP_VIEW_PATH}"
            params["body"] = {"map": temp_view_map_function(record_type.name)}

        context = RequestContext(
            record_type=record_type, on_success=on_success, on_failure=on_failure
        )
        return self.dispatch(context, resource, self.list_action, None, params, method)

    @guarded
    def _list_success(
        self, response: Response, cache_code: typing.Optional[str], context: RequestContext
    ) -> None:
        payload = typing.cast(JSONObject, decode_json(response))
        rows = expect_mappings(response, payload, "rows") or []

        ids = []
        documents = []
        for row in rows:
            value = row.get("value")
            if not isinstance(value, collections.abc.Mapping):
                raise MalformedResponseError(response, 'a row has no document in "value"')
            ids.append(row.get("id", value.get("_id")))
            documents.append(value)

        if documents:
            self.fold(documents, context.record_type, cache_code, False)

        record_type = typing.cast(RecordType, context.record_type)
        store_keys = [self.store.resolve_record_ref(id_, record_type) for id_ in ids]
        if context.on_success is not None:
            context.on_success(
                response, cache_code, store_keys, payload.get("total_rows", len(rows))
            )

    # ..........................................
    # BULK WRITES

    def document_for(self, store_key: StoreKey) -> typing.Dict[str, typing.Any]:
        record_type = self.store.record_type_of(store_key)
        doc = dict(self.store.read_record_data(store_key))
        doc.pop(record_type.primary_key, None)
        doc["type"] = record_type.name
        return doc

    def _bulk_write(
        self,
        resource: str,
        context: RequestContext,
        action: str,
        method: str,
        on_success: Handler,
        on_failure: Handler,
    ) -> Deferred:
        params = {
            "_on_success": on_success,
            "_on_failure": on_failure,
            "url": f"{resource}/{BULK_DOCS_PATH}",
            "body": {"docs": list(context.submitted)},
        }
        return self.dispatch(context, resource, action, None, params, method)

    def bulk_results(
        self, response: Response, context: RequestContext
    ) -> typing.Sequence[JSONObject]:
        """
        Extracts the per-document results of a bulk write and checks that they
        line up with the submitted documents.

        :raises MalformedResponseError: if the body is not a bulk write result.
        :raises CorrelationError: if the results do not line up with the documents.
        """
        payload = decode_json(response, (collections.abc.Mapping, list))
        if isinstance(payload, collections.abc.Mapping):
            results = expect_mappings(response, payload, "new_revs")
            if results is None:
                raise MalformedResponseError(response, 'missing "new_revs"')
        else:
            results = expect_mappings(response, {"results": payload}, "results")
        results = typing.cast(typing.Sequence[JSONObject], results)

        if len(results) != len(context.submitted):
            raise CorrelationError(
                f"{len(results)} results for {len(context.submitted)} documents"
            )
        for i, (doc, result) in enumerate(zip(context.submitted, results)):
            submitted_id = doc.get("_id")
            if submitted_id is not None and result.get("id") != submitted_id:
                raise CorrelationError(
                    f"expected {submitted_id!r} at position {i}, got {result.get('id')!r}"
                )
        return results

    def _item_failed(self, store_key: StoreKey, result: JSONObject) -> None:
        error = BulkItemError(store_key, str(result["error"]), result.get("reason"))
        logger.warning("bulk_item_failed", store_key=store_key, error=error.message)
        self.store.data_source_did_error(store_key, error)

    @guarded
    def _write_success(
        self, response: Response, cache_code: typing.Optional[str], context: RequestContext
    ) -> None:
        results = self.bulk_results(response, context)

        items = []
        for store_key, result in zip(context.records, results):
            if store_key in context.withdrawn:
                continue
            if "error" in result:
                self._item_failed(store_key, result)
                continue
            record_type = self.store.record_type_of(store_key)
            identity = result.get("id")
            self.store.apply_fetched_data(
                store_key,
                {record_type.primary_key: identity, REVISION_FIELD: result.get("rev")},
                identity,
            )
            data = dict(self.store.read_record_data(store_key))
            data.pop(record_type.primary_key, None)
            data["_id"] = identity
            data[REVISION_FIELD] = result.get("rev")
            items.append(data)

        if items:
            self.fold(items, context.record_type, cache_code, True)
        if context.on_success is not None:
            context.on_success(response, cache_code)

    def create_records(
        self,
        store_keys: typing.Sequence[StoreKey],
        *,
        on_success: typing.Optional[typing.Callable[..., None]] = None,
        on_failure: typing.Optional[typing.Callable[..., None]] = None,
    ) -> typing.Sequence[Deferred]:
        handles = []
        for resource, group in self.store.group_by_resource(store_keys).items():
            if resource == WILDCARD_RESOURCE:
                continue
            docs = []
            for store_key in group:
                doc = self.document_for(store_key)
                doc.pop("_id", None)
                doc.pop(REVISION_FIELD, None)
                docs.append(doc)
            context = RequestContext(
                record_type=self.store.record_type_of(group[0]),
                records=group,
                submitted=docs,
                on_success=on_success,
                on_failure=on_failure,
            )
            handles.append(
                self._bulk_write(
                    resource,
                    context,
                    self.create_action,
                    self.create_method,
                    self._write_success,
                    self._create_failure,
                )
            )
        return handles

    def commit_records(
        self,
        store_keys: typing.Sequence[StoreKey],
        *,
        on_success: typing.Optional[typing.Callable[..., None]] = None,
        on_failure: typing.Optional[typing.Callable[..., None]] = None,
    ) -> typing.Sequence[Deferred]:
        handles = []
        for resource, group in self.store.group_by_resource(store_keys).items():
            if resource == WILDCARD_RESOURCE:
                continue
            docs = []
            for store_key in group:
                doc = self.document_for(store_key)
                id_ = self.store.id_for(store_key)
                if id_ is not None:
                    doc["_id"] = id_
                docs.append(doc)
            context = RequestContext(
                record_type=self.store.record_type_of(group[0]),
                records=group,
                submitted=docs,
                on_success=on_success,
                on_failure=on_failure,
            )
            handles.append(
                self._bulk_write(
                    resource,
                    context,
                    self.commit_action,
                    self.commit_method,
                    self._write_success,
                    self._commit_failure,
                )
            )
        return handles

    def destroy_records(
        self,
        store_keys: typing.Sequence[StoreKey],
        *,
        on_success: typing.Optional[typing.Callable[..., None]] = None,
        on_failure: typing.Optional[typing.Callable[..., None]] = None,
    ) -> typing.Sequence[Deferred]:
        handles = []
        for resource, group in self.store.group_by_resource(store_keys).items():
            persisted = []
            local_only = []
            docs = []
            for store_key in group:
                id_ = self.store.id_for(store_key)
                if (
                    resource == WILDCARD_RESOURCE
                    or id_ is None
                    or self.store.is_new_record(store_key)
                ):
                    local_only.append(store_key)
                    continue
                persisted.append(store_key)
                docs.append(
                    {
                        "_id": id_,
                        REVISION_FIELD: self.store.read_record_data(store_key).get(REVISION_FIELD),
                        "_deleted": True,
                    }
                )
            context = RequestContext(
                record_type=self.store.record_type_of(group[0]),
                records=persisted,
                submitted=docs,
                local_only=local_only,
                on_success=on_success,
                on_failure=on_failure,
            )
            if not persisted:
                self._destroy_success(None, None, context)
                continue
            handles.append(
                self._bulk_write(
                    resource,
                    context,
                    self.destroy_action,
                    self.destroy_method,
                    self._destroy_success,
                    self._destroy_failure,
                )
            )
        return handles

    @guarded
    def _destroy_success(
        self,
        response: typing.Optional[Response],
        cache_code: typing.Optional[str],
        context: RequestContext,
    ) -> None:
        removed = list(context.local_only)
        if response is not None:
            results = self.bulk_results(response, context)
            for store_key, result in zip(context.records, results):
                if store_key in context.withdrawn:
                    continue
                if "error" in result:
                    self._item_failed(store_key, result)
                else:
                    removed.append(store_key)
        self.store.remove_records(removed)
        if context.on_success is not None:
            context.on_success(response, cache_code, removed)

    # ..........................................
    # REFRESH

    def refresh_records(
        self,
        store_keys: typing.Sequence[StoreKey],
        *,
        on_success: typing.Optional[typing.Callable[..., None]] = None,
        on_failure: typing.Optional[typing.Callable[..., None]] = None,
    ) -> typing.Sequence[Deferred]:
        """
        Fetches every record with its own request.
        """
        handles = []
        for store_key in store_keys:
            record_type = self.store.record_type_of(store_key)
            id_ = self.store.id_for(store_key)
            if not record_type.resource_url or id_ is None:
                continue
            context = RequestContext(
                record_type=record_type,
                records=[store_key],
                on_success=on_success,
                on_failure=on_failure,
            )
            params = {
                "cache_code": self.store.cache_code_of(store_key),
                "_on_success": self._refresh_success,
                "_on_not_modified": self._refresh_not_modified,
                "_on_failure": self._refresh_failure,
            }
            handles.append(
                self.dispatch(
                    context,
                    record_type.resource_url,
                    self.refresh_action,
                    [id_],
                    params,
                    self.refresh_method,
                )
            )
        return handles

    @guarded
    def _refresh_success(
        self, response: Response, cache_code: typing.Optional[str], context: RequestContext
    ) -> None:
        doc = typing.cast(JSONObject, decode_json(response))
        self.fold([doc], context.record_type, cache_code, True)
        if context.on_success is not None:
            context.on_success(response, cache_code)

    def __init__(
        self,
        transport: Transport,
        store: Store,
        resolver: typing.Optional[RecordTypeResolver] = None,
        config: typing.Optional[ServerConfig] = None,
        on_success: typing.Optional[Handler] = None,
        on_failure: typing.Optional[Handler] = None,
    ) -> None:
        super().__init__(transport, store, resolver, config, on_success, on_failure)
        self.pending = PendingRequestRegistry(transport)


class CouchdbDataSource:
    """
    Reads and writes single CouchDB documents on behalf of store records.

    Outcomes are reported to the store; a failure calls
    :py:meth:`Store.data_source_did_error` for the record concerned before the
    caller's ``on_failure``.

    :param CouchdbServer server: the server requests are dispatched through.
    :param str database: the URL of the database.
    """

    server: CouchdbServer
    database: str

    @property
    def store(self) -> Store:
        return self.server.store

    def _context(
        self,
        store_key: typing.Optional[StoreKey],
        record_type: typing.Optional[RecordType],
        on_success: typing.Optional[typing.Callable[..., None]],
        on_failure: typing.Optional[typing.Callable[..., None]],
    ) -> RequestContext:
        def _on_failure(response, cache_code, error):
            if store_key is not None:
                self.store.data_source_did_error(store_key, error)
            if on_failure is not None:
                on_failure(response, cache_code, error)

        return RequestContext(
            record_type=record_type,
            records=[store_key] if store_key is not None else [],
            on_success=on_success,
            on_failure=_on_failure,
        )

    def _dispatch(
        self,
        context: RequestContext,
        url: str,
        method: str,
        on_success: Handler,
        body: typing.Any = None,
        **query: typing.Any,
    ) -> Deferred:
        params: typing.Dict[str, typing.Any] = dict(query)
        params.update({"url": url, "_on_success": on_success, "_on_failure": self._did_fail})
        if body is not None:
            params["body"] = body
        return self.server.dispatch(context, self.database, "", None, params, method)

    def _did_fail(
        self, response: Response, cache_code: typing.Optional[str], context: RequestContext
    ) -> None:
        logger.info("request_failed", url=response.url, status=response.status_code)
        report_failure(context, response, cache_code, RequestFailedError(response))

    def fetch_records(
        self,
        record_type: RecordType,
        *,
        on_success: typing.Optional[typing.Callable[..., None]] = None,
        on_failure: typing.Optional[typing.Callable[..., None]] = None,
    ) -> Deferred:
        """
        Loads every document of the design view of ``record_type``.

        :raises InvalidDeclarationError: if the record type declares no design view.
        """
        if not (record_type.couch_design and record_type.couch_view):
            raise InvalidDeclarationError(
                f"record type {record_type.qualified_name} declares no design view"
            )
        context = self._context(None, record_type, on_success, on_failure)
        view = design_view_path(record_type.couch_design, record_type.couch_view)
        url = f"{self.database}/{view}"
        return self._dispatch(context, url, "get", self._fetch_success)

    @guarded
    def _fetch_success(
        self, response: Response, cache_code: typing.Optional[str], context: RequestContext
    ) -> None:
        payload = typing.cast(JSONObject, decode_json(response))
        rows = expect_mappings(response, payload, "rows") or []
        documents = []
        for row in rows:
            value = row.get("value")
            if not isinstance(value, collections.abc.Mapping):
                raise MalformedResponseError(response, 'a row has no document in "value"')
            documents.append(value)
        store_keys = self.server.fold(documents, context.record_type, cache_code, True)
        if context.on_success is not None:
            context.on_success(response, cache_code, store_keys)

    def retrieve_records(
        self,
        store_keys: typing.Sequence[StoreKey],
        *,
        on_success: typing.Optional[typing.Callable[..., None]] = None,
        on_failure: typing.Optional[typing.Callable[..., None]] = None,
    ) -> typing.Sequence[Deferred]:
        handles = []
        for store_key in store_keys:
            id_ = self.store.id_for(store_key)
            if id_ is None:
                continue
            context = self._context(
                store_key, self.store.record_type_of(store_key), on_success, on_failure
            )
            handles.append(
                self._dispatch(context, f"{self.database}/{id_}", "get", self._retrieve_success)
            )
        return handles

    @guarded
    def _retrieve_success(
        self, response: Response, cache_code: typing.Optional[str], context: RequestContext
    ) -> None:
        doc = typing.cast(JSONObject, decode_json(response))
        fetched = self.server.fold.normalize(doc, context.record_type)
        if fetched is not None:
            store_key = context.records[0]
            identity = fetched.data.get(fetched.record_type.primary_key)
            self.store.apply_fetched_data(store_key, fetched.data, identity)
        if context.on_success is not None:
            context.on_success(response, cache_code)

    def create_record(
        self,
        store_key: StoreKey,
        *,
        on_success: typing.Optional[typing.Callable[..., None]] = None,
        on_failure: typing.Optional[typing.Callable[..., None]] = None,
    ) -> Deferred:
        doc = self.server.document_for(store_key)
        doc.pop("_id", None)
        doc.pop(REVISION_FIELD, None)
        context = self._context(
            store_key, self.store.record_type_of(store_key), on_success, on_failure
        )
        return self._dispatch(context, self.database, "post", self._write_success, body=doc)

    def update_record(
        self,
        store_key: StoreKey,
        *,
        on_success: typing.Optional[typing.Callable[..., None]] = None,
        on_failure: typing.Optional[typing.Callable[..., None]] = None,
    ) -> Deferred:
        id_ = self.store.id_for(store_key)
        doc = self.server.document_for(store_key)
        doc["_id"] = id_
        context = self._context(
            store_key, self.store.record_type_of(store_key), on_success, on_failure
        )
        return self._dispatch(
            context, f"{self.database}/{id_}", "put", self._write_success, body=doc
        )

    @guarded
    def _write_success(
        self, response: Response, cache_code: typing.Optional[str], context: RequestContext
    ) -> None:
        result = typing.cast(JSONObject, decode_json(response))
        if "id" not in result:
            raise MalformedResponseError(response, 'missing "id"')
        store_key = context.records[0]
        record_type = self.store.record_type_of(store_key)
        self.store.apply_fetched_data(
            store_key,
            {record_type.primary_key: result["id"], REVISION_FIELD: result.get("rev")},
            result["id"],
        )
        if context.on_success is not None:
            context.on_success(response, cache_code)

    def destroy_record(
        self,
        store_key: StoreKey,
        *,
        on_success: typing.Optional[typing.Callable[..., None]] = None,
        on_failure: typing.Optional[typing.Callable[..., None]] = None,
    ) -> typing.Optional[Deferred]:
        """
        Deletes the document of the record.  A record that was never saved is
        removed from the store right away and None is returned.
        """
        id_ = self.store.id_for(store_key)
        if id_ is None or self.store.is_new_record(store_key):
            self.store.remove_records([store_key])
            if on_success is not None:
                on_success(None, None)
            return None
        context = self._context(
            store_key, self.store.record_type_of(store_key), on_success, on_failure
        )
        rev = self.store.read_record_data(store_key).get(REVISION_FIELD)
        query = {"rev": rev} if rev is not None else {}
        return self._dispatch(
            context, f"{self.database}/{id_}", "delete", self._destroy_success, **query
        )

    def _destroy_success(
        self, response: Response, cache_code: typing.Optional[str], context: RequestContext
    ) -> None:
        self.store.remove_records(context.records)
        if context.on_success is not None:
            context.on_success(response, cache_code)

    def cancel(self, store_keys: typing.Iterable[StoreKey]) -> typing.Sequence[str]:
        """
        :return: The request ids that were pending for ``store_keys``.
        """
        return self.server.cancel(store_keys)

    def __init__(self, server: CouchdbServer, database: str) -> None:
        self.server = server
        self.database = database
