from .couchdb import CouchdbDataSource, CouchdbServer  # noqa
from .declarative import Meta, record_type  # noqa
from .defaults import VERSION, DefaultRecordTypeResolverImpl  # noqa
from .deferred import Deferred, DeferredState  # noqa
from .exceptions import (  # noqa
    BulkItemError,
    CorrelationError,
    InvalidDeclarationError,
    MalformedResponseError,
    RequestFailedError,
    ResourceSyncException,
    SyncError,
    UnknownRecordTypeError,
)
from .interfaces import RecordTypeResolver, Store, Transport  # noqa
from .models import (  # noqa
    Bubble,
    FetchedData,
    PostFormat,
    RecordType,
    RequestContext,
    RequestDescriptor,
    Response,
    ServerConfig,
)
from .pending import PendingRequestRegistry  # noqa
from .reconcile import ReconciliationFold  # noqa
from .rest import RestServer  # noqa
from .server import Server, propagate  # noqa

__version__ = VERSION
