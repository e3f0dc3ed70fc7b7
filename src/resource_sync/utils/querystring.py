import collections.abc
import typing


def _stringify(value: typing.Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _is_sequence(value: typing.Any) -> bool:
    return isinstance(value, collections.abc.Sequence) and not isinstance(
        value, (str, bytes, bytearray)
    )


def to_query_string(params: typing.Any, root_key: typing.Optional[str] = None) -> str:
    """
    Converts a scalar, a sequence or a mapping into a query string.

    Nested structures are flattened into bracketed key paths, so that
    ``{"records": [{"title": "a"}]}`` becomes ``records[0][title]=a``.
    ``None`` renders as ``key=``.  Nothing is escaped; the receiving side
    is expected to cope with raw values.

    :param Any params: the value to convert.
    :param Optional[str] root_key: the key path the value lives under. Used for nesting.
    :return: the query string; empty when there is nothing to render.
    """
    if params is None:
        return "" if root_key is None else f"{root_key}="

    pairs: typing.Iterable[typing.Tuple[str, typing.Any]]
    if isinstance(params, collections.abc.Mapping):
        pairs = ((str(k), v) for k, v in params.items())
    elif _is_sequence(params):
        pairs = ((str(i), v) for i, v in enumerate(params))
    else:
        return f"{'' if root_key is None else root_key}={_stringify(params)}"

    parts = []
    for k, v in pairs:
        key = k if root_key is None else f"{root_key}[{k}]"
        part = to_query_string(v, key)
        if part:
            parts.append(part)
    return "&".join(parts)
