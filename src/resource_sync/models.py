"""
Value objects shared by the dispatcher, the lifecycle operations and the
collaborators they talk to.
"""
import dataclasses
import enum
import typing

from .types import JSONObject, StoreKey
from .utils import LOCAL_ID_KEY, WIRE_ID_KEY, decamelize

if typing.TYPE_CHECKING:
    from .deferred import Deferred  # noqa: F401

WILDCARD_RESOURCE = "*"
"""
The resource group key for records that have no backend resource.
"""

CORRELATION_KEY = "_guid"
"""
The payload key that ties a submitted record to the item acknowledging it.
"""


class PostFormat(enum.Enum):
    URL_ENCODED = "url-encoded"
    JSON = "json"


class Bubble(enum.Enum):
    """
    The result of a handler in a completion chain.
    """

    CONTINUE = "continue"
    """Let the next handler in the chain run"""
    HALT = "halt"
    """Stop propagation; later handlers are not called"""


class RecordType:
    """
    A :py:class:`RecordType` describes a kind of record and the backend
    resource it is bound to.

    :param str name: The name of the record type, which is also the type tag it is known by on the wire.
    :param Optional[str] resource_url: The URL of the collection the records live in.
    :param str primary_key: The local field holding the record's business identity.
    :param Optional[str] namespace: The namespace the type is registered under.
    """

    name: str
    namespace: typing.Optional[str]
    resource_url: typing.Optional[str]
    primary_key: str
    default_view: typing.Optional[str]
    """
    A view path relative to the resource, used by the CouchDB variant when listing.
    """
    couch_design: typing.Optional[str]
    couch_view: typing.Optional[str]

    @property
    def qualified_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}.{self.name}"
        return self.name

    @property
    def wire_primary_key(self) -> str:
        """
        The name of the field that carries the primary key in wire payloads.
        """
        if self.primary_key == LOCAL_ID_KEY:
            return WIRE_ID_KEY
        return decamelize(self.primary_key).replace("-", "_")

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.qualified_name!r}, resource_url={self.resource_url!r})"

    def __init__(
        self,
        name: str,
        resource_url: typing.Optional[str] = None,
        primary_key: str = LOCAL_ID_KEY,
        namespace: typing.Optional[str] = None,
        default_view: typing.Optional[str] = None,
        couch_design: typing.Optional[str] = None,
        couch_view: typing.Optional[str] = None,
    ):
        self.name = name
        self.resource_url = resource_url
        self.primary_key = primary_key
        self.namespace = namespace
        self.default_view = default_view
        self.couch_design = couch_design
        self.couch_view = couch_view


@dataclasses.dataclass(frozen=True)
class FetchedData:
    """
    One normalized data hash ready to be pushed into the store.
    """

    record_type: RecordType
    data: JSONObject


@dataclasses.dataclass(frozen=True)
class RequestDescriptor:
    """
    A :py:class:`RequestDescriptor` describes a single HTTP request.  A fresh one
    is built for every dispatch and never mutated afterwards.
    """

    method: str
    url: str
    headers: typing.Mapping[str, str] = dataclasses.field(default_factory=dict)
    body: typing.Optional[str] = None
    content_type: typing.Optional[str] = None


@dataclasses.dataclass(frozen=True)
class Response:
    url: str
    status_code: int
    headers: typing.Mapping[str, str] = dataclasses.field(default_factory=dict)
    text: str = ""
    error: typing.Optional[BaseException] = None
    """
    Set when the request never produced an HTTP response (connection errors, timeouts.)
    """

    @property
    def ok(self) -> bool:
        return self.error is None and (200 <= self.status_code < 300 or self.status_code == 304)

    @property
    def not_modified(self) -> bool:
        return self.status_code == 304 or (
            self.status_code == 200 and self.text == "304 Not Modified"
        )

    def header(self, name: str) -> typing.Optional[str]:
        name = name.lower()
        for k, v in self.headers.items():
            if k.lower() == name:
                return v
        return None


SuccessContinuation = typing.Callable[..., None]
FailureContinuation = typing.Callable[
    [typing.Optional[Response], typing.Optional[str], typing.Any], None
]


@dataclasses.dataclass
class RequestContext:
    """
    Threads the caller's continuations and the records under operation from
    the call that issued a dispatch to the handler of its response.  One
    context belongs to exactly one dispatch.
    """

    record_type: typing.Optional[RecordType] = None
    records: typing.Sequence[StoreKey] = ()
    correlation: typing.Mapping[str, StoreKey] = dataclasses.field(default_factory=dict)
    """
    Correlation id to store key, for providers that echo the id back.
    """
    submitted: typing.Sequence[JSONObject] = ()
    """
    The documents submitted, in order, for providers that correlate by position.
    """
    local_only: typing.Sequence[StoreKey] = ()
    """
    Records completed locally along with the request, without being sent.
    """
    on_success: typing.Optional[SuccessContinuation] = None
    on_failure: typing.Optional[FailureContinuation] = None
    handle: typing.Optional["Deferred"] = None
    withdrawn: typing.Collection[StoreKey] = ()
    """
    Records cancelled or superseded while the request was in flight.
    """


@dataclasses.dataclass
class ServerConfig:
    url_format: str = "/{resource}/{action}"
    post_format: PostFormat = PostFormat.URL_ENCODED
    escape_json: bool = True
    emulate_uncommon_methods: bool = False
    accept: str = "application/json, */*"
    version_header: str = "X-Resource-Sync-Version"
    cache_header: str = "If-Modified-Since"
    last_modified_header: str = "Last-Modified"
