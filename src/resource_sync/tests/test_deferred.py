import pytest

from ..deferred import Deferred, DeferredState
from ..models import RequestDescriptor, Response


@pytest.fixture
def target():
    return Deferred(RequestDescriptor(method="get", url="/tasks"))


@pytest.fixture
def response():
    return Response(
        url="/tasks", status_code=200, headers={"Last-Modified": "yesterday"}, text="{}"
    )


def test_resolve(target, response):
    calls = []
    target.on_success(calls.append).on_failure(lambda r: calls.append(("failed", r)))
    assert target.state is DeferredState.QUEUED
    target.resolve(response)
    assert calls == [response]
    assert target.state is DeferredState.SUCCEEDED
    assert target.settled
    assert target.response_header("last-modified") == "yesterday"
    assert target.response_body() == "{}"


def test_reject(target, response):
    calls = []
    target.on_success(calls.append).on_failure(lambda r: calls.append(("failed", r)))
    target.reject(response)
    assert calls == [("failed", response)]
    assert target.state is DeferredState.FAILED


def test_settles_once(target, response):
    calls = []
    target.on_success(calls.append)
    target.resolve(response)
    target.resolve(response)
    target.reject(response)
    assert calls == [response]
    assert target.state is DeferredState.SUCCEEDED


def test_late_registration(target, response):
    target.resolve(response)
    calls = []
    target.on_success(calls.append)
    target.on_failure(calls.append)
    assert calls == [response]


def test_cancel(target, response):
    calls = []
    target.on_success(calls.append)
    target.mark_sent()
    assert target.state is DeferredState.SENT
    target.cancel()
    target.resolve(response)
    assert calls == []
    assert target.state is DeferredState.CANCELLED
    assert target.response_header("Last-Modified") is None
    assert target.response_body() is None


def test_repr(target):
    assert repr(target) == "Deferred(GET /tasks, queued)"
