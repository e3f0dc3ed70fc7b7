"""
Declarative record types.

A class declares the record type it stands for with an inner ``Meta`` class::

    @record_type(resolver)
    class Contact:
        class Meta:
            namespace = "Contacts"
            resource_url = "sc/contacts"
            primary_key = "guid"

The resulting :py:class:`RecordType` is attached to the class as ``record_type``
and registered on the resolver.
"""
import dataclasses
import typing

from .exceptions import InvalidDeclarationError
from .interfaces import RecordTypeResolver
from .models import RecordType
from .utils import LOCAL_ID_KEY


@dataclasses.dataclass
class Meta:
    name: typing.Optional[str] = None
    namespace: typing.Optional[str] = None
    resource_url: typing.Optional[str] = None
    primary_key: str = LOCAL_ID_KEY
    default_view: typing.Optional[str] = None
    couch_design: typing.Optional[str] = None
    couch_view: typing.Optional[str] = None


_meta_fields = frozenset(f.name for f in dataclasses.fields(Meta))


def handle_meta(meta: typing.Type) -> Meta:
    attrs = {k: v for k, v in vars(meta).items() if not k.startswith("__")}
    unknown = set(attrs) - _meta_fields
    if unknown:
        raise InvalidDeclarationError(
            f"unknown Meta attribute(s): {', '.join(sorted(unknown))}"
        )
    return Meta(**attrs)


def build_record_type(class_: typing.Type) -> RecordType:
    try:
        meta_class = class_.Meta
    except AttributeError:
        meta = Meta()
    else:
        meta = handle_meta(meta_class)

    if not meta.primary_key:
        raise InvalidDeclarationError(f"{class_.__name__} declares an empty primary key")
    if (meta.couch_design is None) != (meta.couch_view is None):
        raise InvalidDeclarationError(
            f"{class_.__name__} must declare both couch_design and couch_view, or neither"
        )

    return RecordType(
        name=meta.name or class_.__name__,
        namespace=meta.namespace,
        resource_url=meta.resource_url,
        primary_key=meta.primary_key,
        default_view=meta.default_view,
        couch_design=meta.couch_design,
        couch_view=meta.couch_view,
    )


T = typing.TypeVar("T", bound=typing.Type)


def record_type(
    resolver: typing.Optional[RecordTypeResolver] = None,
) -> typing.Callable[[T], T]:
    def _(class_: T) -> T:
        rt = build_record_type(class_)
        if resolver is not None:
            resolver.register(rt)
        class_.record_type = rt
        return class_

    return _
