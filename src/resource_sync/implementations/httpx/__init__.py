from .core import HTTPXTransport  # noqa
