import typing

from .exceptions import InvalidDeclarationError, UnknownRecordTypeError
from .interfaces import RecordTypeResolver
from .models import RecordType
from .utils import capitalize

VERSION = "0.1.0"


class DefaultRecordTypeResolverImpl(RecordTypeResolver):
    """
    Resolves type tags against an explicit registry of record types.

    A tag is capitalized and looked up under each of ``namespaces`` in order;
    the first hit wins.  Without namespaces the capitalized tag is looked up
    as is.  A tag that already carries a namespace (``"Contacts.Contact"``)
    is looked up directly.

    :param Sequence[str] namespaces: the namespaces to search, in order.
    """

    namespaces: typing.Sequence[str]
    record_types: typing.Dict[str, RecordType]

    def candidates_for(self, type_tag: str) -> typing.Sequence[str]:
        if "." in type_tag:
            namespace, _, name = type_tag.rpartition(".")
            return [f"{namespace}.{capitalize(name)}"]
        name = capitalize(type_tag)
        if self.namespaces:
            return [f"{namespace}.{name}" for namespace in self.namespaces]
        return [name]

    def resolve(self, type_tag: str) -> RecordType:
        candidates = self.candidates_for(type_tag)
        for candidate in candidates:
            record_type = self.record_types.get(candidate)
            if record_type is not None:
                return record_type
        raise UnknownRecordTypeError(type_tag, candidates)

    def register(self, record_type: RecordType) -> RecordType:
        existing = self.record_types.get(record_type.qualified_name)
        if existing is not None and existing is not record_type:
            raise InvalidDeclarationError(
                f"record type {record_type.qualified_name} is already registered"
            )
        self.record_types[record_type.qualified_name] = record_type
        return record_type

    def __contains__(self, qualified_name: str) -> bool:
        return qualified_name in self.record_types

    def __init__(self, namespaces: typing.Iterable[str] = ()):
        self.namespaces = list(namespaces)
        self.record_types = {}
