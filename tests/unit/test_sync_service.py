import logging

import pytest

from flatcache import codec
from flatcache.errors import FlatcacheError, SchemaError, SyncError
from flatcache.events import EventBus, EventKind
from flatcache.records import AssetType, EntryType, Record, RecordHook
from flatcache.schema import SchemaRegistry
from flatcache.services.meta_service import MetaCache, meta_cache_key
from flatcache.services.sync_service import RecordRepository, on_deleted
from flatcache.storage import LocalStorage


class CountingStorage(LocalStorage):
    def __init__(self, root):
        super().__init__(root)
        self.writes = []
        self.deletes = []

    def write(self, path, data):
        self.writes.append(path)
        super().write(path, data)

    def delete(self, path):
        self.deletes.append(path)
        return super().delete(path)


class FailingStorage(LocalStorage):
    def write(self, path, data):
        raise PermissionError(f"read-only: {path}")


class RefusingStorage(LocalStorage):
    def __init__(self, root, refused):
        super().__init__(root)
        self.refused = refused

    def write(self, path, data):
        if path == self.refused:
            raise PermissionError(f"read-only: {path}")
        super().write(path, data)


class AuditHook(RecordHook):
    def __init__(self, calls):
        self.calls = calls

    def should_create(self, record):
        self.calls.append("audit")
        return True


class RecordingVetoHook(RecordHook):
    def __init__(self, calls):
        self.calls = calls

    def should_create(self, record):
        self.calls.append("veto")
        return False


class VetoHook(RecordHook):
    def should_create(self, record):
        return False

    def should_delete(self, record):
        return False


def _entry_repo(tmp_path, storage=None, *, hooks=(), timestamps=False):
    storage = storage if storage is not None else CountingStorage(tmp_path / "collections")
    events = EventBus()
    seen = []
    events.subscribe(seen.append)
    repo = RecordRepository(
        EntryType(storage),
        db_path=tmp_path / "cache.db",
        registry=SchemaRegistry(),
        events=events,
        hooks=hooks,
        timestamps=timestamps,
    )
    return repo, storage, seen


def test_create_writes_file_and_emits_created(tmp_path):
    repo, storage, seen = _entry_repo(tmp_path)

    record = repo.create(
        {"id": "abc", "collection": "blog", "slug": "hello", "data": {"title": "Hi"}}
    )

    assert record.exists
    assert storage.writes == ["blog/hello.md"]
    text = (tmp_path / "collections" / "blog" / "hello.md").read_text()
    assert codec.parse_document(text) == {"id": "abc", "title": "Hi"}
    assert [event.kind for event in seen] == [EventKind.CREATED]
    stored = repo.find("abc")
    assert stored["path"] == "blog/hello"
    assert stored["published"] is True


def test_update_emits_updated_without_deleting(tmp_path):
    repo, storage, seen = _entry_repo(tmp_path)
    record = repo.create({"id": "abc", "collection": "blog", "slug": "hello"})

    record["data"] = {"title": "Changed"}
    repo.save(record)

    assert storage.deletes == []
    assert storage.writes == ["blog/hello.md", "blog/hello.md"]
    assert [event.kind for event in seen] == [EventKind.CREATED, EventKind.UPDATED]
    assert repo.find("abc")["data"] == {"title": "Changed"}


def test_rename_deletes_old_file_once_and_writes_new_once(tmp_path):
    repo, storage, _ = _entry_repo(tmp_path)
    record = repo.create({"id": "abc", "collection": "blog", "slug": "hello"})
    storage.writes.clear()

    record["path"] = "blog/renamed"
    repo.save(record)

    assert storage.deletes == ["blog/hello.md"]
    assert storage.writes == ["blog/renamed.md"]
    assert not (tmp_path / "collections" / "blog" / "hello.md").exists()
    assert (tmp_path / "collections" / "blog" / "renamed.md").exists()


def test_rename_with_absent_old_file_only_warns(tmp_path, caplog):
    repo, storage, _ = _entry_repo(tmp_path)
    record = repo.create({"id": "abc", "collection": "blog", "slug": "hello"})
    (tmp_path / "collections" / "blog" / "hello.md").unlink()

    record["path"] = "blog/renamed"
    with caplog.at_level(logging.WARNING, logger="flatcache.services.sync_service"):
        repo.save(record)

    assert "already absent" in caplog.text
    assert (tmp_path / "collections" / "blog" / "renamed.md").exists()


def test_delete_removes_file_once_and_writes_nothing(tmp_path):
    repo, storage, seen = _entry_repo(tmp_path)
    record = repo.create({"id": "abc", "collection": "blog", "slug": "hello"})
    storage.writes.clear()

    assert repo.delete(record) is True

    assert storage.deletes == ["blog/hello.md"]
    assert storage.writes == []
    assert repo.find("abc") is None
    assert seen[-1].kind == EventKind.DELETED
    assert repo.delete(record) is False


def test_on_deleted_tolerates_missing_file(tmp_path, caplog):
    entry_type = EntryType(LocalStorage(tmp_path))
    record = Record("entry", {"id": "x", "path": "blog/missing"}, exists=True)

    with caplog.at_level(logging.WARNING, logger="flatcache.services.sync_service"):
        on_deleted(entry_type, record)

    assert "blog/missing.md" in caplog.text


def test_hooks_can_skip_file_mirror(tmp_path):
    repo, storage, seen = _entry_repo(tmp_path, hooks=[VetoHook()])

    record = repo.create({"id": "abc", "collection": "blog", "slug": "hello"})
    repo.delete(record)

    assert storage.writes == []
    assert storage.deletes == []
    assert seen == []
    assert repo.find("abc") is None


def test_write_failure_rolls_back_row(tmp_path):
    repo, _, seen = _entry_repo(tmp_path, FailingStorage(tmp_path / "collections"))

    with pytest.raises(SyncError) as excinfo:
        repo.create({"id": "abc", "collection": "blog", "slug": "hello"})

    assert excinfo.value.path == "blog/hello.md"
    assert repo.find("abc") is None
    assert seen == []


def test_failed_rename_restores_old_file(tmp_path):
    storage = RefusingStorage(tmp_path / "collections", refused="blog/renamed.md")
    repo, _, seen = _entry_repo(tmp_path, storage)
    record = repo.create({"id": "abc", "collection": "blog", "slug": "hello"})
    original = (tmp_path / "collections" / "blog" / "hello.md").read_text()

    record["path"] = "blog/renamed"
    with pytest.raises(SyncError):
        repo.save(record)

    assert repo.find("abc")["path"] == "blog/hello"
    assert (tmp_path / "collections" / "blog" / "hello.md").read_text() == original
    assert not (tmp_path / "collections" / "blog" / "renamed.md").exists()
    assert [event.kind for event in seen] == [EventKind.CREATED]


def test_every_hook_is_consulted_after_a_veto(tmp_path):
    calls = []
    repo, storage, _ = _entry_repo(
        tmp_path, hooks=[RecordingVetoHook(calls), AuditHook(calls)]
    )

    repo.create({"id": "abc", "collection": "blog", "slug": "hello"})

    assert calls == ["veto", "audit"]
    assert storage.writes == []


def test_save_rejects_wrongly_typed_column(tmp_path):
    repo, storage, _ = _entry_repo(tmp_path)

    with pytest.raises(SchemaError):
        repo.create({"id": "abc", "collection": "blog", "slug": "hello", "blueprint": ["a"]})

    assert repo.find("abc") is None
    assert storage.writes == []


def test_saving_unknown_existing_record_raises(tmp_path):
    repo, _, _ = _entry_repo(tmp_path)
    ghost = Record("entry", {"id": "ghost", "collection": "blog", "slug": "x", "path": "blog/x"}, exists=True)

    with pytest.raises(FlatcacheError):
        repo.save(ghost)


def test_where_filters_rows(tmp_path):
    repo, _, _ = _entry_repo(tmp_path)
    repo.create({"id": "a", "collection": "blog", "slug": "a"})
    repo.create({"id": "b", "collection": "news", "slug": "b"})

    assert [record.key for record in repo.where(collection="news")] == ["b"]
    assert len(repo.all()) == 2
    assert len(repo.all(limit=1)) == 1
    with pytest.raises(FlatcacheError):
        repo.where(nope="x")


def test_reads_on_missing_database_are_empty(tmp_path):
    repo, _, _ = _entry_repo(tmp_path)

    assert repo.all() == []
    assert repo.find("abc") is None
    assert not (tmp_path / "cache.db").exists()


def test_timestamps_are_maintained(tmp_path):
    repo, _, _ = _entry_repo(tmp_path, timestamps=True)

    record = repo.create({"id": "a", "collection": "blog", "slug": "a"})
    created = record["created_at"]
    record["data"] = {"title": "x"}
    repo.save(record)

    stored = repo.find("a")
    assert stored["created_at"] == created
    assert stored["updated_at"] is not None


def test_asset_save_marks_meta_file_quietly(tmp_path):
    meta_cache = MetaCache()
    storage = CountingStorage(tmp_path / "assets")
    events = EventBus()
    seen = []
    events.subscribe(seen.append)
    repo = RecordRepository(
        AssetType({"main": storage}, meta_cache=meta_cache),
        db_path=tmp_path / "cache.db",
        registry=SchemaRegistry(),
        events=events,
    )

    record = repo.create({"container": "main", "path": "images/hero.jpg", "data": {"alt": "Hero"}})

    assert record.key == "main::images/hero.jpg"
    assert record["meta_file_exists"] is True
    assert storage.writes == ["images/.meta/hero.jpg.yaml"]
    assert len(seen) == 1
    assert repo.find("main::images/hero.jpg")["meta_file_exists"] is True
    meta = codec.parse_yaml((tmp_path / "assets" / "images" / ".meta" / "hero.jpg.yaml").read_text())
    assert meta["data"] == {"alt": "Hero"}
    assert meta_cache.get(meta_cache_key("main", "images/hero.jpg"))["data"] == {"alt": "Hero"}

    repo.delete(record)
    assert meta_cache.get(meta_cache_key("main", "images/hero.jpg")) is None
