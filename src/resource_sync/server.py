"""
The :py:class:`Server` object knows how to send requests for records to a
backend and how to fold the responses back into the local store.

It is designed to work with a resource oriented backend; every record type
is bound to the collection URL it can be queried at.  The five lifecycle
operations (:py:meth:`Server.list_for`, :py:meth:`Server.create_records`,
:py:meth:`Server.refresh_records`, :py:meth:`Server.commit_records` and
:py:meth:`Server.destroy_records`) group the records they are given by
resource, issue one request per group and return immediately; the outcome
is delivered later to the ``on_success`` / ``on_failure`` continuations.

Success continuations receive ``(response, cache_code)``; the list operation
appends ``(records, count)`` and the destroy operation appends ``(records,)``.
Failure continuations receive ``(response, cache_code, error)``.  Groups that
need no request complete synchronously with a ``None`` response.
"""
import collections.abc
import dataclasses
import functools
import json
import typing
import urllib.parse

import structlog

from .defaults import VERSION, DefaultRecordTypeResolverImpl
from .deferred import Deferred
from .exceptions import (
    CorrelationError,
    MalformedResponseError,
    RequestFailedError,
    SyncError,
)
from .interfaces import RecordTypeResolver, Store, Transport
from .models import (
    CORRELATION_KEY,
    WILDCARD_RESOURCE,
    Bubble,
    PostFormat,
    RecordType,
    RequestContext,
    RequestDescriptor,
    Response,
    ServerConfig,
)
from .reconcile import ReconciliationFold
from .types import JSONObject, JSONValue, StoreKey
from .utils import LOCAL_ID_KEY, WIRE_ID_KEY, decamelize, decamelize_data, to_query_string

logger = structlog.get_logger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

Handler = typing.Callable[[Response, typing.Optional[str], typing.Any], typing.Optional[Bubble]]

REFRESH_URL_KEY = "refreshURL"
UPDATE_URL_KEY = "updateURL"
DESTROY_URL_KEY = "destroyURL"


def propagate(handlers: typing.Iterable[typing.Optional[Handler]], *args) -> Bubble:
    """
    Calls ``handlers`` in order until one of them returns :py:attr:`Bubble.HALT`.

    :return: :py:attr:`Bubble.HALT` if the chain was stopped, :py:attr:`Bubble.CONTINUE` otherwise.
    """
    for handler in handlers:
        if handler is None:
            continue
        if handler(*args) is Bubble.HALT:
            return Bubble.HALT
    return Bubble.CONTINUE


@dataclasses.dataclass
class RequestControls:
    """
    The control options recognized in the parameters of :py:meth:`Server.request`.
    """

    internal_success: typing.Optional[Handler] = None
    internal_not_modified: typing.Optional[Handler] = None
    internal_failure: typing.Optional[Handler] = None
    on_success: typing.Optional[Handler] = None
    on_failure: typing.Optional[Handler] = None
    request_context: typing.Any = None
    accept: typing.Optional[str] = None
    cache_code: typing.Optional[str] = None
    url: typing.Optional[str] = None
    emulate_uncommon_methods: typing.Optional[bool] = None
    request_headers: typing.Optional[typing.Mapping[str, str]] = None
    body: typing.Any = None


CONTROL_OPTIONS: typing.Mapping[str, str] = {
    "_on_success": "internal_success",
    "_on_not_modified": "internal_not_modified",
    "_on_failure": "internal_failure",
    "on_success": "on_success",
    "on_failure": "on_failure",
    "request_context": "request_context",
    "accept": "accept",
    "cache_code": "cache_code",
    "url": "url",
    "emulate_uncommon_methods": "emulate_uncommon_methods",
    "request_headers": "request_headers",
}


def append_query(url: str, query: str) -> str:
    if not query:
        return url
    return url + ("&" if "?" in url else "?") + query


def wire_field_name(name: str) -> str:
    if name == LOCAL_ID_KEY:
        return WIRE_ID_KEY
    return decamelize(name)


def decode_json(
    response: Response,
    expected: typing.Tuple[typing.Type, ...] = (collections.abc.Mapping,),
) -> JSONValue:
    """
    Parses the body of ``response`` strictly.

    :raises MalformedResponseError: if the body is not JSON or not of the expected kind.
    """
    try:
        payload = json.loads(response.text)
    except ValueError as e:
        raise MalformedResponseError(response, f"invalid JSON ({e})") from e
    if not isinstance(payload, expected) or isinstance(payload, str):
        raise MalformedResponseError(
            response, f"unexpected {type(payload).__name__} at the top level"
        )
    return payload


def expect_mappings(
    response: Response, payload: JSONObject, key: str
) -> typing.Optional[typing.Sequence[JSONObject]]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(
        isinstance(item, collections.abc.Mapping) for item in value
    ):
        raise MalformedResponseError(response, f'"{key}" is not an array of objects')
    return value


def expect_list(
    response: Response, payload: JSONObject, key: str
) -> typing.Optional[typing.Sequence[typing.Any]]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, list):
        raise MalformedResponseError(response, f'"{key}" is not an array')
    return value


def report_failure(
    context: typing.Any,
    response: typing.Optional[Response],
    cache_code: typing.Optional[str],
    error: SyncError,
) -> None:
    on_failure = getattr(context, "on_failure", None)
    if on_failure is not None:
        on_failure(response, cache_code, error)


def guarded(handler):
    """
    Wraps a response handler so that a malformed or uncorrelatable payload is
    logged and reported to the failure continuation of the request context
    instead of escaping the handler.  Handlers validate a payload entirely
    before touching the store.
    """

    @functools.wraps(handler)
    def _(self, response, cache_code, context):
        try:
            return handler(self, response, cache_code, context)
        except MalformedResponseError as e:
            logger.warning(
                "invalid_json",
                url=response.url if response is not None else None,
                error=e.detail,
            )
            report_failure(context, response, cache_code, e)
        except CorrelationError as e:
            logger.warning(
                "correlation_mismatch",
                url=response.url if response is not None else None,
                error=e.detail,
            )
            report_failure(context, response, cache_code, e)

    return _


class Server:
    """
    The generic dispatcher and record lifecycle coordinator.

    :param Transport transport: carries the requests.
    :param Store store: the local store records are reconciled into.
    :param Optional[RecordTypeResolver] resolver: resolves ``type`` tags of received data.
    :param Optional[ServerConfig] config: URL, encoding and header settings.
    :param on_success: a handler called after every successful request, before the
                       operation's own handler.  Returning :py:attr:`Bubble.HALT` stops propagation.
    :param on_failure: the same for failed requests.
    """

    list_action = "list"
    list_method = "get"
    create_action = "create"
    create_method = "post"
    refresh_action = "show"
    refresh_method = "get"
    commit_action = "update"
    commit_method = "post"
    destroy_action = "destroy"
    destroy_method = "post"

    control_options: typing.Mapping[str, str] = CONTROL_OPTIONS

    transport: Transport
    store: Store
    resolver: RecordTypeResolver
    config: ServerConfig
    on_success: typing.Optional[Handler]
    on_failure: typing.Optional[Handler]
    fold: ReconciliationFold

    # ..........................................
    # DISPATCH

    def split_params(
        self, params: typing.Optional[typing.Mapping[str, typing.Any]]
    ) -> typing.Tuple[RequestControls, typing.Dict[str, typing.Any]]:
        """
        Separates the control options from the payload.  ``params`` itself is left as is.
        """
        controls = RequestControls()
        payload: typing.Dict[str, typing.Any] = {}
        for key, value in (params or {}).items():
            field = self.control_options.get(key)
            if field is None:
                payload[key] = value
            else:
                setattr(controls, field, value)
        return controls, payload

    def build_url(
        self, resource: str, action: str, ids: typing.Optional[typing.Sequence[typing.Any]]
    ) -> str:
        url = self.config.url_format.format(resource=resource, action=action)
        if ids and len(ids) == 1:
            url = f"{url}/{ids[0]}"
        return url

    def build_headers(self, controls: RequestControls) -> typing.Dict[str, str]:
        headers = dict(controls.request_headers or {})
        headers[self.config.version_header] = VERSION
        headers["Accept"] = controls.accept or self.config.accept
        if controls.cache_code:
            headers[self.config.cache_header] = controls.cache_code
        return headers

    def build_request_descriptor(
        self,
        method: str,
        url: str,
        payload: typing.Mapping[str, typing.Any],
        controls: RequestControls,
    ) -> RequestDescriptor:
        parameters = to_query_string(payload)
        body = None
        content_type = None
        if parameters:
            if method in ("get", "head", "delete"):
                # a DELETE request may not carry a body
                url = append_query(url, parameters)
            else:
                body = parameters
                content_type = FORM_CONTENT_TYPE
        return RequestDescriptor(
            method=method,
            url=url,
            headers=self.build_headers(controls),
            body=body,
            content_type=content_type,
        )

    def request(
        self,
        resource: typing.Optional[str],
        action: typing.Optional[str],
        ids: typing.Optional[typing.Sequence[typing.Any]] = None,
        params: typing.Optional[typing.Mapping[str, typing.Any]] = None,
        method: typing.Optional[str] = None,
    ) -> Deferred:
        """
        This is the root method for accessing a server resource.

        Besides the payload, ``params`` may carry these control options:

        * ``on_success`` / ``on_failure`` -- handlers for this request only, called
          with ``(response, cache_code, request_context)`` before the server-wide ones.
        * ``_on_success`` / ``_on_not_modified`` / ``_on_failure`` -- the handlers
          called last, once no earlier handler halted propagation.
        * ``request_context`` -- passed back to every handler.
        * ``accept`` -- overrides the ``Accept`` header.
        * ``cache_code`` -- the concurrency token of the last fetch.
        * ``url`` -- overrides URL building.
        * ``emulate_uncommon_methods`` -- send PUT and DELETE as POST with a
          ``_method`` parameter.
        * ``request_headers`` -- additional request headers.

        :param Optional[str] resource: the URL of the resource collection.
        :param Optional[str] action: the action performed on the resource.
        :param Optional[Sequence] ids: the identifiers of the records concerned.
        :param Optional[Mapping] params: payload and control options.
        :param Optional[str] method: the HTTP method, ``get`` by default.
        :return: The handle of the issued request.
        """
        controls, payload = self.split_params(params)
        method = (method or "get").lower()

        url = controls.url
        if not url:
            url = self.build_url(resource or "", action or "", ids)

        if ids and len(ids) > 1:
            payload["ids"] = ",".join(str(id_) for id_ in ids)

        emulate = controls.emulate_uncommon_methods
        if emulate is None:
            emulate = self.config.emulate_uncommon_methods
        if emulate and method in ("put", "delete"):
            payload["_method"] = method
            method = "post"

        descriptor = self.build_request_descriptor(method, url, payload, controls)
        handle = self.transport.issue(descriptor)
        handle.on_success(functools.partial(self._did_succeed, handle, controls))
        handle.on_failure(functools.partial(self._did_fail, handle, controls))
        logger.info("request_issued", method=descriptor.method, url=descriptor.url)
        return handle

    def dispatch(
        self,
        context: RequestContext,
        resource: str,
        action: str,
        ids: typing.Optional[typing.Sequence[typing.Any]],
        params: typing.Dict[str, typing.Any],
        method: str,
    ) -> Deferred:
        params["request_context"] = context
        handle = self.request(resource, action, ids, params, method)
        context.handle = handle
        self.track(context)
        return handle

    def track(self, context: RequestContext) -> None:
        """
        Called once the request of ``context`` has been issued.
        """

    def settle(self, context: RequestContext) -> typing.Sequence[StoreKey]:
        """
        Called when the response for ``context`` arrives.

        :return: The records of ``context`` the response still applies to.
        """
        return context.records

    def _accepts(self, context: typing.Any, response: Response) -> bool:
        if isinstance(context, RequestContext) and context.handle is not None:
            active = set(self.settle(context))
            withdrawn = [k for k in context.records if k not in active]
            if withdrawn:
                logger.info("late_response_discarded", url=response.url, records=len(withdrawn))
                if not active:
                    return False
                context.withdrawn = withdrawn
        return True

    def _did_succeed(self, handle: Deferred, controls: RequestControls, response: Response) -> None:
        context = controls.request_context
        if not self._accepts(context, response):
            return
        cache_code = handle.response_header(self.config.last_modified_header)
        if (
            propagate([controls.on_success, self.on_success], response, cache_code, context)
            is Bubble.HALT
        ):
            return
        if response.not_modified:
            if controls.internal_not_modified is not None:
                controls.internal_not_modified(response, cache_code, context)
        elif controls.internal_success is not None:
            controls.internal_success(response, cache_code, context)

    def _did_fail(self, handle: Deferred, controls: RequestControls, response: Response) -> None:
        context = controls.request_context
        if not self._accepts(context, response):
            return
        cache_code = handle.response_header(self.config.last_modified_header)
        propagate(
            [controls.on_failure, self.on_failure, controls.internal_failure],
            response,
            cache_code,
            context,
        )

    def _operation_failed(
        self,
        operation: str,
        response: Response,
        cache_code: typing.Optional[str],
        context: RequestContext,
    ) -> None:
        logger.info(f"{operation}_failed", url=response.url, status=response.status_code)
        report_failure(context, response, cache_code, RequestFailedError(response))

    # ..........................................
    # LIST

    def list_for(
        self,
        record_type: RecordType,
        *,
        order: typing.Union[str, typing.Sequence[str], None] = None,
        conditions: typing.Optional[typing.Mapping[str, typing.Any]] = None,
        offset: typing.Optional[int] = None,
        limit: typing.Optional[int] = None,
        cache_code: typing.Optional[str] = None,
        on_success: typing.Optional[typing.Callable[..., None]] = None,
        on_failure: typing.Optional[typing.Callable[..., None]] = None,
    ) -> typing.Optional[Deferred]:
        """
        Queries a list of records of ``record_type`` from the backend.

        The backend is expected to answer with a JSON object carrying
        ``records`` (the data hashes), ``ids`` (the primary keys of the listed
        records, in order) and ``count`` (the total number of matches, ignoring
        ``offset`` and ``limit``)::

            {
                "records": [{"id": 1, "type": "Task", "title": "1st task"}],
                "ids": [1],
                "count": 100
            }

        :param RecordType record_type: the type of the records to query.
        :param order: a field name or a sequence of field names; defaults to the primary key.
        :param conditions: field/value pairs the backend should filter on.
        :return: The request handle, or None if the record type has no resource.
        """
        resource = record_type.resource_url
        if not resource:
            return None

        if order is None:
            order = [record_type.primary_key]
        elif isinstance(order, str):
            order = [order]

        params: typing.Dict[str, typing.Any] = {}
        if conditions:
            params.update(decamelize_data(conditions))
        params.update(
            {
                "_on_success": self._list_success,
                "_on_not_modified": self._list_not_modified,
                "_on_failure": self._list_failure,
            }
        )
        if cache_code:
            params["cache_code"] = cache_code
        if offset:
            params["offset"] = offset
        if limit:
            params["limit"] = limit
        params["order"] = ",".join(wire_field_name(field) for field in order)

        context = RequestContext(
            record_type=record_type, on_success=on_success, on_failure=on_failure
        )
        return self.dispatch(context, resource, self.list_action, None, params, self.list_method)

    @guarded
    def _list_success(
        self, response: Response, cache_code: typing.Optional[str], context: RequestContext
    ) -> None:
        payload = typing.cast(JSONObject, decode_json(response))
        records = expect_mappings(response, payload, "records")
        ids = expect_list(response, payload, "ids") or []

        if records:
            self.fold(records, context.record_type, cache_code, False)

        record_type = typing.cast(RecordType, context.record_type)
        store_keys = [self.store.resolve_record_ref(guid, record_type) for guid in ids]
        if context.on_success is not None:
            context.on_success(response, cache_code, store_keys, payload.get("count"))

    def _list_not_modified(
        self, response: Response, cache_code: typing.Optional[str], context: RequestContext
    ) -> None:
        if context.on_success is not None:
            context.on_success(response, cache_code, [], None)

    def _list_failure(
        self, response: Response, cache_code: typing.Optional[str], context: RequestContext
    ) -> None:
        self._operation_failed("list", response, cache_code, context)

    # ..........................................
    # CREATE

    def create_records(
        self,
        store_keys: typing.Sequence[StoreKey],
        *,
        on_success: typing.Optional[typing.Callable[..., None]] = None,
        on_failure: typing.Optional[typing.Callable[..., None]] = None,
    ) -> typing.Sequence[Deferred]:
        """
        Sends the records to the backend to create them.  Every submitted data
        hash carries a ``_guid`` key that the backend is expected to echo back,
        together with the primary key it assigned::

            {"records": [{"_guid": "12", "id": 100, "title": "1st task"}]}

        Records without a resource are skipped.
        """
        handles = []
        for resource, group in self.store.group_by_resource(store_keys).items():
            if resource == WILDCARD_RESOURCE:
                continue

            correlation: typing.Dict[str, StoreKey] = {}
            data = []
            for store_key in group:
                rec_data = decamelize_data(self.store.read_record_data(store_key))
                correlation_id = str(store_key)
                rec_data[CORRELATION_KEY] = correlation_id
                correlation[correlation_id] = store_key
                data.append(rec_data)

            context = RequestContext(
                record_type=self.store.record_type_of(group[0]),
                records=group,
                correlation=correlation,
                on_success=on_success,
                on_failure=on_failure,
            )
            params = {
                "_on_success": self._create_success,
                "_on_failure": self._create_failure,
                "records": data,
            }
            handles.append(
                self.dispatch(
                    context, resource, self.create_action, None, params, self.create_method
                )
            )
        return handles

    @guarded
    def _create_success(
        self, response: Response, cache_code: typing.Optional[str], context: RequestContext
    ) -> None:
        payload = typing.cast(JSONObject, decode_json(response))
        records = expect_mappings(response, payload, "records")

        if records is not None:
            # assign the primary key to each record first
            for data in records:
                correlation_id = data.get(CORRELATION_KEY)
                if correlation_id is None:
                    continue
                store_key = context.correlation.get(str(correlation_id))
                if store_key is None:
                    continue
                record_type = self.store.record_type_of(store_key)
                identity = data.get(record_type.wire_primary_key)
                self.store.apply_fetched_data(
                    store_key, {record_type.primary_key: identity}, identity
                )
            self.fold(records, context.record_type, cache_code, True)

        if context.on_success is not None:
            context.on_success(response, cache_code)

    def _create_failure(
        self, response: Response, cache_code: typing.Optional[str], context: RequestContext
    ) -> None:
        self._operation_failed("create", response, cache_code, context)

    # ..........................................
    # REFRESH

    def refresh_records(
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

            cache_code = None
            ids = []
            identified = []
            for store_key in group:
                cache_code = cache_code or self.store.cache_code_of(store_key)
                id_ = self.store.id_for(store_key)
                if id_ is not None:
                    ids.append(id_)
                    identified.append(store_key)

            if not ids:
                if on_success is not None:
                    on_success(None, None)
                continue

            context = RequestContext(
                record_type=self.store.record_type_of(group[0]),
                records=group,
                on_success=on_success,
                on_failure=on_failure,
            )
            params: typing.Dict[str, typing.Any] = {
                "cache_code": cache_code or None,
                "_on_success": self._refresh_success,
                "_on_not_modified": self._refresh_not_modified,
                "_on_failure": self._refresh_failure,
            }
            if len(ids) == 1:
                url = self.store.read_record_data(identified[0]).get(REFRESH_URL_KEY)
                if url:
                    params["url"] = url

            handles.append(
                self.dispatch(
                    context, resource, self.refresh_action, ids, params, self.refresh_method
                )
            )
        return handles

    @guarded
    def _refresh_success(
        self, response: Response, cache_code: typing.Optional[str], context: RequestContext
    ) -> None:
        payload = typing.cast(JSONObject, decode_json(response))
        records = expect_mappings(response, payload, "records")
        if records:
            self.fold(records, context.record_type, cache_code, True)
        if context.on_success is not None:
            context.on_success(response, cache_code)

    def _refresh_not_modified(
        self, response: Response, cache_code: typing.Optional[str], context: RequestContext
    ) -> None:
        if context.on_success is not None:
            context.on_success(response, cache_code)

    def _refresh_failure(
        self, response: Response, cache_code: typing.Optional[str], context: RequestContext
    ) -> None:
        self._operation_failed("refresh", response, cache_code, context)

    # ..........................................
    # COMMIT

    def encode_commit_payload(self, group: typing.Sequence[StoreKey]) -> typing.Any:
        """
        Builds the ``records`` parameter of a commit request according to the
        configured post format.  Returns None if there is nothing to send.
        """
        objects = [decamelize_data(self.store.read_record_data(k)) for k in group]
        objects = [o for o in objects if o]
        if not objects:
            return None
        if self.config.post_format is PostFormat.URL_ENCODED:
            return objects
        encoded = json.dumps(objects)
        if self.config.escape_json:
            encoded = urllib.parse.quote(encoded, safe="@*_+-./")
        return encoded

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

            data = self.encode_commit_payload(group)
            if data is None:
                if on_success is not None:
                    on_success(None, None)
                continue

            ids = []
            if len(group) == 1:
                id_ = self.store.id_for(group[0])
                if id_ is not None:
                    ids.append(id_)

            context = RequestContext(
                record_type=self.store.record_type_of(group[0]),
                records=group,
                on_success=on_success,
                on_failure=on_failure,
            )
            params = {
                "_on_success": self._commit_success,
                "_on_failure": self._commit_failure,
                "records": data,
            }
            if len(ids) == 1:
                url = self.store.read_record_data(group[0]).get(UPDATE_URL_KEY)
                if url:
                    params["url"] = url

            handles.append(
                self.dispatch(
                    context, resource, self.commit_action, ids, params, self.commit_method
                )
            )
        return handles

    @guarded
    def _commit_success(
        self, response: Response, cache_code: typing.Optional[str], context: RequestContext
    ) -> None:
        payload = typing.cast(JSONObject, decode_json(response))
        records = expect_mappings(response, payload, "records")
        if records:
            self.fold(records, context.record_type, cache_code, True)
        if context.on_success is not None:
            context.on_success(response, cache_code)

    def _commit_failure(
        self, response: Response, cache_code: typing.Optional[str], context: RequestContext
    ) -> None:
        self._operation_failed("commit", response, cache_code, context)

    # ..........................................
    # DESTROY

    def destroy_records(
        self,
        store_keys: typing.Sequence[StoreKey],
        *,
        on_success: typing.Optional[typing.Callable[..., None]] = None,
        on_failure: typing.Optional[typing.Callable[..., None]] = None,
    ) -> typing.Sequence[Deferred]:
        """
        Destroys the records on the backend and then removes them from the store.
        Groups without a resource, and groups made only of records that were
        never persisted, are removed right away without a request.
        """
        handles = []
        for resource, group in self.store.group_by_resource(store_keys).items():
            context = RequestContext(
                record_type=self.store.record_type_of(group[0]),
                records=group,
                on_success=on_success,
                on_failure=on_failure,
            )
            if resource == WILDCARD_RESOURCE:
                self._destroy_success(None, None, context)
                continue

            ids = []
            identified = []
            for store_key in group:
                id_ = self.store.id_for(store_key)
                if id_ is not None and not self.store.is_new_record(store_key):
                    ids.append(id_)
                    identified.append(store_key)

            if not ids:
                self._destroy_success(None, None, context)
                continue

            params: typing.Dict[str, typing.Any] = {
                "_on_success": self._destroy_success,
                "_on_failure": self._destroy_failure,
            }
            if len(ids) == 1:
                url = self.store.read_record_data(identified[0]).get(DESTROY_URL_KEY)
                if url:
                    params["url"] = url

            handles.append(
                self.dispatch(
                    context, resource, self.destroy_action, ids, params, self.destroy_method
                )
            )
        return handles

    def _destroy_success(
        self,
        response: typing.Optional[Response],
        cache_code: typing.Optional[str],
        context: RequestContext,
    ) -> None:
        self.store.remove_records(context.records)
        if context.on_success is not None:
            context.on_success(response, cache_code, context.records)

    def _destroy_failure(
        self, response: Response, cache_code: typing.Optional[str], context: RequestContext
    ) -> None:
        self._operation_failed("destroy", response, cache_code, context)

    # ..........................................
    # SUPPORT

    def preload(self, data_items: typing.Optional[typing.Sequence[JSONObject]]) -> None:
        """
        Folds data sent along with the initial page load into the store.
        """
        if not data_items:
            return
        self.fold(data_items, None, None, False)

    def __init__(
        self,
        transport: Transport,
        store: Store,
        resolver: typing.Optional[RecordTypeResolver] = None,
        config: typing.Optional[ServerConfig] = None,
        on_success: typing.Optional[Handler] = None,
        on_failure: typing.Optional[Handler] = None,
    ) -> None:
        self.transport = transport
        self.store = store
        self.resolver = resolver if resolver is not None else DefaultRecordTypeResolverImpl()
        self.config = config if config is not None else ServerConfig()
        self.on_success = on_success
        self.on_failure = on_failure
        self.fold = ReconciliationFold(store, self.resolver)
