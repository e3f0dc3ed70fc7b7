"""
Key-name conversions between the local (camelCase) convention and the
wire (snake_case) convention.

The wire ``id`` field and the local ``guid`` field are renamed into each
other at every nesting level.  Keys starting with an underscore are
provider metadata (``_id``, ``_rev``, ``_deleted``, ...) and are passed
through untouched.
"""
import collections.abc
import re
import typing

WIRE_ID_KEY = "id"
LOCAL_ID_KEY = "guid"

_camelize_re = re.compile(r"[-_\s]+(.)?")
_decamelize_re = re.compile(r"([a-z\d])([A-Z])")


def capitalize(s: str) -> str:
    return s[:1].upper() + s[1:]


def camelize(s: str) -> str:
    """
    >>> camelize("comment_count")
    'commentCount'
    >>> camelize("first-name")
    'firstName'
    """
    return _camelize_re.sub(lambda m: (m.group(1) or "").upper(), s)


def decamelize(s: str) -> str:
    """
    >>> decamelize("commentCount")
    'comment_count'
    """
    return _decamelize_re.sub(r"\1_\2", s).lower()


def _is_reserved(key: typing.Any) -> bool:
    return not isinstance(key, str) or key.startswith("_")


def _convert(
    data: typing.Any,
    rename_from: str,
    rename_to: str,
    convert_key: typing.Callable[[str], str],
) -> typing.Any:
    if data is None:
        return data
    if isinstance(data, collections.abc.Mapping):
        result = {}
        for key, value in data.items():
            value = _convert(value, rename_from, rename_to, convert_key)
            if key == rename_from:
                key = rename_to
            elif not _is_reserved(key):
                key = convert_key(key)
            result[key] = value
        return result
    if isinstance(data, collections.abc.Sequence) and not isinstance(
        data, (str, bytes, bytearray)
    ):
        return [_convert(item, rename_from, rename_to, convert_key) for item in data]
    return data


def camelize_data(data: typing.Any) -> typing.Any:
    """
    Converts wire data into the local naming convention, recursively.

    :param Any data: a mapping, a sequence or a scalar received from a server.
    :return: a fresh structure with converted keys; scalars are returned as is.
    """
    return _convert(data, WIRE_ID_KEY, LOCAL_ID_KEY, camelize)


def decamelize_data(data: typing.Any) -> typing.Any:
    """
    Converts local data into the wire naming convention, recursively.
    This is the mirror of :py:func:`camelize_data`.
    """
    return _convert(data, LOCAL_ID_KEY, WIRE_ID_KEY, decamelize)
