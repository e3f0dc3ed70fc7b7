import typing


def english_enumerate(items: typing.Iterable[str], conj: str = ", or ") -> str:
    """
    Joins ``items`` the way an English sentence would enumerate them.

    >>> english_enumerate(["Contacts.Task", "Tasks.Task", "Task"])
    'Contacts.Task, Tasks.Task, or Task'
    """
    buf = list(items)
    if not buf:
        return ""
    if len(buf) == 1:
        return buf[0]
    if len(buf) == 2:
        return f"{buf[0]}{conj.lstrip(',')}{buf[1]}"
    return ", ".join(buf[:-1]) + conj + buf[-1]
