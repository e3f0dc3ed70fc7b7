from .formatting import english_enumerate  # noqa
from .naming import (  # noqa
    LOCAL_ID_KEY,
    WIRE_ID_KEY,
    camelize,
    camelize_data,
    capitalize,
    decamelize,
    decamelize_data,
)
from .querystring import to_query_string  # noqa
