import typing

JSONScalar = typing.Union[bool, int, float, str]
JSONArray = typing.Sequence[typing.Any]
JSONObject = typing.Mapping[str, typing.Any]
MutableJSONObject = typing.MutableMapping[str, typing.Any]
JSONValue = typing.Union[JSONScalar, JSONArray, JSONObject, None]

StoreKey = typing.Hashable
"""
An opaque handle the local store hands out for one record instance.
"""
