import typing

from .server import Server


class RestServer(Server):
    """
    A :py:class:`Server` speaking to a backend that follows REST conventions.
    The operation is carried by the HTTP method rather than by an action in the URL::

        list     GET    /contacts
        create   POST   /contacts
        refresh  GET    /contacts/1
        commit   PUT    /contacts/1
        destroy  DELETE /contacts/1

    Requests concerning several records pass their ids as ``ids=1,2,3``.
    Set ``emulate_uncommon_methods`` on the configuration for backends that only
    understand GET and POST.
    """

    list_action = ""
    create_action = ""
    refresh_action = ""
    commit_action = ""
    commit_method = "put"
    destroy_action = ""
    destroy_method = "delete"

    def build_url(
        self, resource: str, action: str, ids: typing.Optional[typing.Sequence[typing.Any]]
    ) -> str:
        url = resource
        if ids and len(ids) == 1:
            url = f"{url}/{ids[0]}"
        if action:
            url = f"{url}/{action}"
        return url
