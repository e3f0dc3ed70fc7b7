import json

import pytest

from ..defaults import DefaultRecordTypeResolverImpl
from ..deferred import DeferredState
from ..exceptions import (
    BulkItemError,
    CorrelationError,
    InvalidDeclarationError,
    MalformedResponseError,
    RequestFailedError,
)
from ..models import RecordType
from .test_server import Recorder
from .testing import PlainStore, RecordingTransport


@pytest.fixture
def task_type():
    return RecordType("Task", resource_url="db")


@pytest.fixture
def viewed_type():
    return RecordType("Event", resource_url="db", couch_design="app", couch_view="events")


@pytest.fixture
def resolver(task_type, viewed_type):
    resolver = DefaultRecordTypeResolverImpl()
    resolver.register(task_type)
    resolver.register(viewed_type)
    return resolver


@pytest.fixture
def store():
    return PlainStore()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def target(transport, store, resolver):
    from ..couchdb import CouchdbServer

    return CouchdbServer(transport, store, resolver)


def body_of(handle):
    return json.loads(handle.request.body)


class TestList:
    def test_temp_view(self, target, transport, store, task_type):
        on_success = Recorder()
        handle = target.list_for(task_type, on_success=on_success)
        assert handle.request.method == "post"
        assert handle.request.url == "db/_temp_view"
        assert handle.request.content_type == "application/json"
        assert body_of(handle) == {
            "map": 'function(doc) { if (doc.type == "Task") { emit(doc._id, doc); } }'
        }

        response = transport.respond(
            handle,
            {
                "total_rows": 3,
                "offset": 0,
                "rows": [
                    {
                        "id": "x1",
                        "key": "x1",
                        "value": {"_id": "x1", "_rev": "1-a", "type": "Task", "title": "a"},
                    }
                ],
            },
        )
        ((r, cache_code, records, count),) = on_success.calls
        assert r is response
        assert count == 3
        assert [store[k] for k in records] == [
            {"guid": "x1", "_rev": "1-a", "type": "Task", "title": "a"}
        ]
        assert store.bulk_calls[0][1] is False

    def test_design_view(self, target, viewed_type):
        handle = target.list_for(viewed_type, conditions={"limit": 10})
        assert handle.request.method == "get"
        assert handle.request.url == "db/_design/app/_view/events?limit=10"
        assert handle.request.body is None

    def test_conditions_in_wire_case(self, target, viewed_type):
        handle = target.list_for(viewed_type, conditions={"dueDate": "x"})
        assert handle.request.url == "db/_design/app/_view/events?due_date=x"

    def test_explicit_view(self, target, viewed_type):
        handle = target.list_for(viewed_type, view="_all_docs")
        assert handle.request.url == "db/_all_docs"

    def test_count_fallback(self, target, transport, task_type):
        on_success = Recorder()
        transport.respond(
            target.list_for(task_type, on_success=on_success),
            {"rows": [{"id": "x1", "value": {"_id": "x1", "type": "Task"}}]},
        )
        assert on_success.calls[0][3] == 1

    def test_row_without_document(self, target, transport, store, task_type):
        on_failure = Recorder()
        transport.respond(
            target.list_for(task_type, on_failure=on_failure), {"rows": [{"id": "x1"}]}
        )
        assert isinstance(on_failure.calls[0][2], MalformedResponseError)
        assert store.bulk_calls == []


class TestCreate:
    @pytest.fixture
    def records(self, store, task_type):
        return [store.add(task_type, {"title": "a"}), store.add(task_type, {"title": "b"})]

    def test_bulk_docs(self, target, transport, records):
        (handle,) = target.create_records(records)
        assert len(transport.issued) == 1
        assert handle.request.method == "post"
        assert handle.request.url == "db/_bulk_docs"
        assert body_of(handle) == {
            "docs": [{"title": "a", "type": "Task"}, {"title": "b", "type": "Task"}]
        }

    @pytest.mark.parametrize(
        ("results", "expected"),
        [
            (
                {"new_revs": [{"id": "x1", "rev": "r1"}, {"id": "x2", "rev": "r2"}]},
                [("x1", "r1"), ("x2", "r2")],
            ),
            (
                {"new_revs": [{"id": "x2", "rev": "r2"}, {"id": "x1", "rev": "r1"}]},
                [("x2", "r2"), ("x1", "r1")],
            ),
            (
                [{"ok": True, "id": "x1", "rev": "r1"}, {"ok": True, "id": "x2", "rev": "r2"}],
                [("x1", "r1"), ("x2", "r2")],
            ),
        ],
    )
    def test_positional_correlation(self, target, transport, store, records, results, expected):
        on_success = Recorder()
        (handle,) = target.create_records(records, on_success=on_success)
        transport.respond(handle, results)
        assert [(store.id_for(k), store[k]["_rev"]) for k in records] == expected
        assert not any(store.is_new_record(k) for k in records)
        assert [store[k]["title"] for k in records] == ["a", "b"]
        assert store.bulk_calls[0][1] is True
        assert len(on_success.calls) == 1

    def test_length_mismatch(self, target, transport, store, records):
        on_success = Recorder()
        on_failure = Recorder()
        (handle,) = target.create_records(records, on_success=on_success, on_failure=on_failure)
        transport.respond(handle, {"new_revs": [{"id": "x1", "rev": "r1"}]})
        assert isinstance(on_failure.calls[0][2], CorrelationError)
        assert not on_success.called
        assert all(store.is_new_record(k) for k in records)
        assert store.bulk_calls == []

    def test_missing_new_revs(self, target, transport, records):
        on_failure = Recorder()
        (handle,) = target.create_records(records, on_failure=on_failure)
        transport.respond(handle, {"ok": True})
        assert isinstance(on_failure.calls[0][2], MalformedResponseError)

    def test_failure(self, target, transport, records):
        on_failure = Recorder()
        (handle,) = target.create_records(records, on_failure=on_failure)
        transport.respond(handle, {"error": "unauthorized"}, status_code=401)
        assert isinstance(on_failure.calls[0][2], RequestFailedError)


class TestCommit:
    @pytest.fixture
    def records(self, store, task_type):
        return [
            store.add(task_type, {"guid": "x1", "_rev": "1-a", "title": "a"}, new=False),
            store.add(task_type, {"guid": "x2", "_rev": "1-b", "title": "b"}, new=False),
        ]

    def test_commit(self, target, transport, store, records):
        on_success = Recorder()
        (handle,) = target.commit_records(records, on_success=on_success)
        assert handle.request.url == "db/_bulk_docs"
        assert body_of(handle) == {
            "docs": [
                {"_id": "x1", "_rev": "1-a", "title": "a", "type": "Task"},
                {"_id": "x2", "_rev": "1-b", "title": "b", "type": "Task"},
            ]
        }
        transport.respond(handle, [{"id": "x1", "rev": "2-a"}, {"id": "x2", "rev": "2-b"}])
        assert [store[k]["_rev"] for k in records] == ["2-a", "2-b"]
        assert len(on_success.calls) == 1

    def test_reordered_response(self, target, transport, store, records):
        on_failure = Recorder()
        (handle,) = target.commit_records(records, on_failure=on_failure)
        transport.respond(handle, [{"id": "x2", "rev": "2-b"}, {"id": "x1", "rev": "2-a"}])
        assert isinstance(on_failure.calls[0][2], CorrelationError)
        assert [store[k]["_rev"] for k in records] == ["1-a", "1-b"]

    def test_item_error(self, target, transport, store, records):
        on_success = Recorder()
        (handle,) = target.commit_records(records, on_success=on_success)
        transport.respond(
            handle,
            [
                {"id": "x1", "rev": "2-a"},
                {"id": "x2", "error": "conflict", "reason": "Document update conflict."},
            ],
        )
        assert [store[k]["_rev"] for k in records] == ["2-a", "1-b"]
        ((store_key, error),) = store.errors
        assert store_key == records[1]
        assert isinstance(error, BulkItemError)
        assert error.error == "conflict"
        assert str(error) == (
            f"document for record {records[1]!r} was rejected: conflict"
            " (Document update conflict.)"
        )
        assert len(on_success.calls) == 1


class TestDestroy:
    def test_destroy(self, target, transport, store, task_type):
        persisted = store.add(task_type, {"guid": "x1", "_rev": "1-a"}, new=False)
        fresh = store.add(task_type, {"title": "draft"})
        on_success = Recorder()
        (handle,) = target.destroy_records([persisted, fresh], on_success=on_success)
        assert body_of(handle) == {"docs": [{"_id": "x1", "_rev": "1-a", "_deleted": True}]}
        assert persisted in store.records

        response = transport.respond(handle, [{"id": "x1", "rev": "2-a"}])
        assert store.records == {}
        assert on_success.calls == [(response, None, [fresh, persisted])]

    def test_all_new(self, target, transport, store, task_type):
        keys = [store.add(task_type), store.add(task_type)]
        on_success = Recorder()
        assert target.destroy_records(keys, on_success=on_success) == []
        assert transport.issued == []
        assert store.records == {}
        assert on_success.calls == [(None, None, keys)]

    def test_item_error(self, target, transport, store, task_type):
        keys = [
            store.add(task_type, {"guid": "x1", "_rev": "1-a"}, new=False),
            store.add(task_type, {"guid": "x2", "_rev": "1-b"}, new=False),
        ]
        (handle,) = target.destroy_records(keys)
        transport.respond(handle, [{"id": "x1", "rev": "2-a"}, {"id": "x2", "error": "conflict"}])
        assert list(store.records) == [keys[1]]
        assert [k for k, _ in store.errors] == [keys[1]]


class TestRefresh:
    def test_refresh(self, target, transport, store, task_type):
        keys = [
            store.add(task_type, {"guid": "x1", "title": "a"}, new=False),
            store.add(task_type, {"guid": "x2", "title": "b"}, new=False),
            store.add(task_type, {"title": "unsaved"}),
        ]
        handles = target.refresh_records(keys)
        assert [(h.request.method, h.request.url) for h in handles] == [
            ("get", "db/x1"),
            ("get", "db/x2"),
        ]
        transport.respond(handles[1], {"_id": "x2", "_rev": "3-b", "type": "Task", "title": "B"})
        assert store[keys[1]] == {"guid": "x2", "_rev": "3-b", "type": "Task", "title": "B"}
        assert store[keys[0]]["title"] == "a"

    def test_malformed(self, target, transport, store, task_type):
        a = store.add(task_type, {"guid": "x1", "title": "a"}, new=False)
        on_failure = Recorder()
        (handle,) = target.refresh_records([a], on_failure=on_failure)
        transport.respond(handle, "not json at all")
        assert isinstance(on_failure.calls[0][2], MalformedResponseError)
        assert store[a] == {"guid": "x1", "title": "a"}


class TestCancellation:
    @pytest.fixture
    def record(self, store, task_type):
        return store.add(task_type, {"guid": "x1", "_rev": "1-a"}, new=False)

    def test_cancel_queued(self, target, transport, record):
        on_success = Recorder()
        (handle,) = target.commit_records([record], on_success=on_success)
        assert target.cancel([record]) == ["record-1"]
        assert transport.cancelled == [handle]
        assert handle.state is DeferredState.CANCELLED
        transport.respond(handle, [{"id": "x1", "rev": "2-a"}])
        assert not on_success.called

    def test_late_response_discarded(self, target, transport, store, record):
        on_success = Recorder()
        (handle,) = target.commit_records([record], on_success=on_success)
        transport.send(handle)
        target.cancel([record])
        transport.respond(handle, [{"id": "x1", "rev": "2-a"}])
        assert not on_success.called
        assert store[record]["_rev"] == "1-a"
        assert store.bulk_calls == []

    def test_superseded(self, target, transport, store, record):
        first_success = Recorder()
        second_success = Recorder()
        (first,) = target.commit_records([record], on_success=first_success)
        transport.send(first)
        (second,) = target.commit_records([record], on_success=second_success)
        transport.respond(first, [{"id": "x1", "rev": "2-a"}])
        assert not first_success.called
        transport.respond(second, [{"id": "x1", "rev": "3-a"}])
        assert store[record]["_rev"] == "3-a"
        assert len(second_success.calls) == 1
        assert len(target.pending) == 0

    def test_settled_entries_removed(self, target, transport, record):
        (handle,) = target.commit_records([record])
        assert record in target.pending
        transport.respond(handle, [{"id": "x1", "rev": "2-a"}])
        assert record not in target.pending
        assert target.cancel([record]) == []

    def test_cancel_part_of_create_batch(self, target, transport, store, task_type):
        a = store.add(task_type, {"title": "a"})
        b = store.add(task_type, {"title": "b"})
        on_success = Recorder()
        (handle,) = target.create_records([a, b], on_success=on_success)
        transport.send(handle)
        assert target.cancel([a]) == ["record-1"]
        assert b in target.pending

        transport.respond(handle, [{"id": "x1", "rev": "1-a"}, {"id": "x2", "rev": "1-b"}])
        assert store.id_for(b) == "x2"
        assert store[b]["_rev"] == "1-b"
        assert not store.is_new_record(b)
        assert store.id_for(a) is None
        assert store.is_new_record(a)
        assert len(on_success.calls) == 1
        assert len(target.pending) == 0

    def test_cancel_part_of_queued_batch(self, target, transport, store, task_type):
        a = store.add(task_type, {"title": "a"})
        b = store.add(task_type, {"title": "b"})
        (handle,) = target.create_records([a, b])
        target.cancel([a])
        assert transport.cancelled == []
        assert handle.state is DeferredState.QUEUED
        target.cancel([b])
        assert transport.cancelled == [handle]
        assert handle.state is DeferredState.CANCELLED

    def test_superseded_part_of_batch(self, target, transport, store, task_type):
        a = store.add(task_type, {"guid": "x1", "_rev": "1-a"}, new=False)
        b = store.add(task_type, {"guid": "x2", "_rev": "1-b"}, new=False)
        first_success = Recorder()
        (first,) = target.commit_records([a, b], on_success=first_success)
        transport.send(first)
        (second,) = target.commit_records([a])
        assert target.pending.get(b) is first

        transport.respond(first, [{"id": "x1", "rev": "2-a"}, {"id": "x2", "rev": "2-b"}])
        assert store[a]["_rev"] == "1-a"
        assert store[b]["_rev"] == "2-b"
        assert len(first_success.calls) == 1

        transport.respond(second, [{"id": "x1", "rev": "3-a"}])
        assert store[a]["_rev"] == "3-a"
        assert len(target.pending) == 0

    def test_cancel_part_of_destroy_batch(self, target, transport, store, task_type):
        a = store.add(task_type, {"guid": "x1", "_rev": "1-a"}, new=False)
        b = store.add(task_type, {"guid": "x2", "_rev": "1-b"}, new=False)
        on_success = Recorder()
        (handle,) = target.destroy_records([a, b], on_success=on_success)
        transport.send(handle)
        target.cancel([a])
        response = transport.respond(
            handle, [{"id": "x1", "rev": "2-a"}, {"id": "x2", "rev": "2-b"}]
        )
        assert store.removed == [b]
        assert on_success.calls == [(response, None, [b])]


class TestDataSource:
    @pytest.fixture
    def data_source(self, target):
        from ..couchdb import CouchdbDataSource

        return CouchdbDataSource(target, "db")

    def test_fetch_records(self, data_source, transport, store, viewed_type):
        on_success = Recorder()
        handle = data_source.fetch_records(viewed_type, on_success=on_success)
        assert (handle.request.method, handle.request.url) == ("get", "db/_design/app/_view/events")
        transport.respond(
            handle,
            {"rows": [{"id": "e1", "value": {"_id": "e1", "_rev": "1", "type": "Event"}}]},
        )
        ((_, _, keys),) = on_success.calls
        assert [store[k] for k in keys] == [{"guid": "e1", "_rev": "1", "type": "Event"}]
        assert store.bulk_calls[0][1] is True

    def test_fetch_records_without_view(self, data_source, task_type):
        with pytest.raises(InvalidDeclarationError):
            data_source.fetch_records(task_type)

    def test_retrieve_records(self, data_source, transport, store, task_type):
        a = store.add(task_type, {"guid": "x1"}, new=False)
        (handle,) = data_source.retrieve_records([a, store.add(task_type)])
        assert handle.request.url == "db/x1"
        transport.respond(handle, {"_id": "x1", "_rev": "2-a", "title": "a"})
        assert store[a] == {"guid": "x1", "_rev": "2-a", "title": "a"}

    def test_create_record(self, data_source, transport, store, task_type):
        a = store.add(task_type, {"title": "a"})
        handle = data_source.create_record(a)
        assert (handle.request.method, handle.request.url) == ("post", "db")
        assert body_of(handle) == {"title": "a", "type": "Task"}
        transport.respond(handle, {"ok": True, "id": "x9", "rev": "1-z"}, status_code=201)
        assert store.id_for(a) == "x9"
        assert store[a]["_rev"] == "1-z"
        assert not store.is_new_record(a)

    def test_update_record(self, data_source, transport, store, task_type):
        a = store.add(task_type, {"guid": "x1", "_rev": "1-a", "title": "b"}, new=False)
        handle = data_source.update_record(a)
        assert (handle.request.method, handle.request.url) == ("put", "db/x1")
        assert body_of(handle) == {"_id": "x1", "_rev": "1-a", "title": "b", "type": "Task"}
        transport.respond(handle, {"ok": True, "id": "x1", "rev": "2-a"}, status_code=201)
        assert store[a]["_rev"] == "2-a"

    def test_destroy_record(self, data_source, transport, store, task_type):
        a = store.add(task_type, {"guid": "x1", "_rev": "1-a"}, new=False)
        handle = data_source.destroy_record(a)
        assert (handle.request.method, handle.request.url) == ("delete", "db/x1?rev=1-a")
        assert handle.request.body is None
        transport.respond(handle, {"ok": True, "id": "x1", "rev": "2-a"})
        assert store.removed == [a]

    def test_destroy_record_without_revision(self, data_source, transport, store, task_type):
        a = store.add(task_type, {"guid": "x1"}, new=False)
        handle = data_source.destroy_record(a)
        assert handle.request.url == "db/x1"

    def test_destroy_unsaved_record(self, data_source, transport, store, task_type):
        a = store.add(task_type, {"title": "a"})
        on_success = Recorder()
        assert data_source.destroy_record(a, on_success=on_success) is None
        assert transport.issued == []
        assert store.removed == [a]
        assert on_success.calls == [(None, None)]

    def test_failure(self, data_source, transport, store, task_type):
        a = store.add(task_type, {"guid": "x1"}, new=False)
        on_failure = Recorder()
        (handle,) = data_source.retrieve_records([a], on_failure=on_failure)
        transport.respond(handle, {"error": "not_found"}, status_code=404)
        ((store_key, error),) = store.errors
        assert store_key == a
        assert isinstance(error, RequestFailedError)
        assert on_failure.calls[0][2] is error

    def test_malformed(self, data_source, transport, store, task_type):
        a = store.add(task_type, {"title": "a"})
        handle = data_source.create_record(a)
        transport.respond(handle, {"ok": True})
        assert isinstance(store.errors[0][1], MalformedResponseError)
        assert store.is_new_record(a)

    def test_cancel(self, data_source, transport, store, task_type):
        a = store.add(task_type, {"guid": "x1"}, new=False)
        (handle,) = data_source.retrieve_records([a])
        assert data_source.cancel([a]) == ["record-1"]
        assert handle.state is DeferredState.CANCELLED
