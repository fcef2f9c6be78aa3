import datetime
import logging
import sqlite3

import pytest

from flatcache.errors import SchemaError
from flatcache.records import DEFERRED_KEY, AssetType, EntryType, RecordHook
from flatcache.schema import Column, ColumnType, SchemaRegistry
from flatcache.services import loader_service
from flatcache.services.loader_service import (
    LoadStatus,
    coerce_row,
    rebuild,
    resolve_missing_columns,
)
from flatcache.services.meta_service import MetaCache, meta_cache_key
from flatcache.storage import LocalStorage


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _rows(db_path, table):
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        return [dict(row) for row in conn.execute(f"SELECT * FROM {table} ORDER BY rowid")]
    finally:
        conn.close()


class RatingHook(RecordHook):
    def columns(self):
        return (Column("rating", ColumnType.INTEGER),)


def test_resolve_missing_columns_uses_defaults_and_nulls():
    blueprint = (
        Column("id"),
        Column("published", ColumnType.BOOLEAN, default=True),
        Column("origin", nullable=True),
    )

    row = resolve_missing_columns({"id": "a"}, blueprint)

    assert row == {"id": "a", "published": True, "origin": None}


def test_resolve_missing_columns_raises_for_required_column():
    with pytest.raises(SchemaError) as excinfo:
        resolve_missing_columns({}, (Column("id"),), path="blog/a.md")

    assert excinfo.value.column == "id"
    assert excinfo.value.path == "blog/a.md"


def test_bulk_load_batches_and_patches_after_insert(tmp_path, monkeypatch):
    root = tmp_path / "assets"
    root.mkdir()
    for idx in range(1200):
        (root / f"file{idx:04d}.txt").write_text("x")
    meta_cache = MetaCache()
    asset_type = AssetType({"main": LocalStorage(root)}, meta_cache=meta_cache)
    events = []
    inserted: set[object] = set()
    real_insert = loader_service.bulk_insert
    real_update = loader_service.update_by_key

    def recording_insert(conn, table, rows, blueprint):
        assert all(DEFERRED_KEY not in row for row in rows)
        events.append(("insert", len(rows)))
        result = real_insert(conn, table, rows, blueprint)
        inserted.update(row["id"] for row in rows)
        return result

    def recording_update(conn, table, key, values, blueprint, **kwargs):
        assert key in inserted
        events.append(("update", key))
        return real_update(conn, table, key, values, blueprint, **kwargs)

    monkeypatch.setattr(loader_service, "bulk_insert", recording_insert)
    monkeypatch.setattr(loader_service, "update_by_key", recording_update)

    result = rebuild(
        asset_type,
        db_path=tmp_path / "cache.db",
        registry=SchemaRegistry(),
        read_concurrency=4,
    )

    assert result.status == LoadStatus.LOADED
    assert result.batches == [500, 500, 200]
    assert result.rows == 1200
    assert result.patched == 1200
    assert [event[1] for event in events if event[0] == "insert"] == [500, 500, 200]
    first_update = next(idx for idx, event in enumerate(events) if event[0] == "update")
    assert events[first_update - 1] == ("insert", 500)
    rows = _rows(tmp_path / "cache.db", "assets")
    assert rows[0]["id"] == "main::file0000.txt"
    assert rows[0]["size"] == 1
    assert rows[0]["mime_type"] == "text/plain"
    assert meta_cache.get(meta_cache_key("main", "file0000.txt"))["size"] == 1


def test_assets_with_meta_files_are_not_patched(tmp_path):
    root = tmp_path / "assets"
    _write(root / "images" / "hero.jpg", "jpg")
    _write(root / "images" / ".meta" / "hero.jpg.yaml", "data:\n  alt: Hero\nsize: 3\n")
    asset_type = AssetType({"main": LocalStorage(root)}, meta_cache=MetaCache())

    result = rebuild(asset_type, db_path=tmp_path / "cache.db", registry=SchemaRegistry())

    assert result.rows == 1
    assert result.patched == 0
    row = _rows(tmp_path / "cache.db", "assets")[0]
    assert row["folder"] == "images"
    assert row["meta_file_exists"] == 1
    assert row["data"] == '{"alt": "Hero"}'
    assert row["file_path_read_from"] == str(root / "images" / "hero.jpg")


def test_malformed_files_are_skipped_and_logged(tmp_path, caplog):
    root = tmp_path / "collections"
    _write(root / "blog" / "good.md", "---\ntitle: Good\n---\n")
    _write(root / "blog" / "broken.md", "---\ntitle: [oops\n---\n")
    _write(root / "blog" / "list.md", "- just\n- a list\n")
    _write(root / "orphan.md", "---\ntitle: No collection\n---\n")
    entry_type = EntryType(LocalStorage(root))

    with caplog.at_level(logging.WARNING, logger="flatcache.services.loader_service"):
        result = rebuild(entry_type, db_path=tmp_path / "cache.db", registry=SchemaRegistry())

    assert result.rows == 1
    assert result.skipped == 3
    assert "broken.md" in caplog.text
    assert "orphan.md" in caplog.text
    rows = _rows(tmp_path / "cache.db", "entries")
    assert [row["slug"] for row in rows] == ["good"]


def test_schema_error_skips_row_but_continues(tmp_path):
    root = tmp_path / "collections"
    _write(root / "blog" / "rated.md", "---\nrating: 5\n---\n")
    _write(root / "blog" / "unrated.md", "---\ntitle: Nothing\n---\n")
    registry = SchemaRegistry()

    result = rebuild(
        EntryType(LocalStorage(root)),
        db_path=tmp_path / "cache.db",
        registry=registry,
        hooks=[RatingHook()],
    )

    assert result.rows == 1
    assert result.skipped == 1
    assert "rating" in [column.name for column in registry.blueprint("entries")]
    assert _rows(tmp_path / "cache.db", "entries")[0]["rating"] == 5


def test_every_non_nullable_column_is_filled(tmp_path):
    root = tmp_path / "collections"
    for idx in range(5):
        _write(root / "blog" / f"2024-01-0{idx + 1}.post-{idx}.md", f"---\nindex: {idx}\n---\n")
    registry = SchemaRegistry()

    rebuild(
        EntryType(LocalStorage(root)),
        db_path=tmp_path / "cache.db",
        registry=registry,
        timestamps=True,
        batch_size=2,
    )

    required = [column.name for column in registry.blueprint("entries") if not column.nullable]
    rows = _rows(tmp_path / "cache.db", "entries")
    assert len(rows) == 5
    for row in rows:
        for name in required:
            assert row[name] is not None
    assert "created_at" in rows[0]


def test_duplicate_ids_are_skipped(tmp_path):
    root = tmp_path / "collections"
    _write(root / "blog" / "a.md", "---\nid: same\n---\n")
    _write(root / "blog" / "b.md", "---\nid: same\n---\n")

    result = rebuild(EntryType(LocalStorage(root)), db_path=tmp_path / "cache.db", registry=SchemaRegistry())

    assert result.rows == 1
    assert result.skipped == 1


def test_missing_root_produces_empty_table(tmp_path):
    result = rebuild(
        EntryType(LocalStorage(tmp_path / "absent")),
        db_path=tmp_path / "cache.db",
        registry=SchemaRegistry(),
    )

    assert result.status == LoadStatus.EMPTY
    assert result.batches == []
    assert _rows(tmp_path / "cache.db", "entries") == []


def test_rebuild_replaces_previous_rows(tmp_path):
    root = tmp_path / "collections"
    _write(root / "blog" / "one.md", "---\nid: one\n---\n")
    entry_type = EntryType(LocalStorage(root))
    rebuild(entry_type, db_path=tmp_path / "cache.db", registry=SchemaRegistry())
    (root / "blog" / "one.md").unlink()
    _write(root / "blog" / "two.md", "---\nid: two\n---\n")

    rebuild(entry_type, db_path=tmp_path / "cache.db", registry=SchemaRegistry())

    assert [row["id"] for row in _rows(tmp_path / "cache.db", "entries")] == ["two"]


def test_coerce_row_converts_values_to_column_types():
    blueprint = (
        Column("id"),
        Column("size", ColumnType.INTEGER, nullable=True),
        Column("published", ColumnType.BOOLEAN, default=True),
        Column("date", ColumnType.DATETIME, nullable=True),
    )

    row = coerce_row(
        {"id": 5, "size": "12", "published": 0, "date": datetime.date(2024, 1, 1)},
        blueprint,
    )

    assert row == {"id": "5", "size": 12, "published": False, "date": "2024-01-01"}


@pytest.mark.parametrize(
    "column, value",
    [
        (Column("blueprint", nullable=True), ["a", "b"]),
        (Column("size", ColumnType.INTEGER, nullable=True), "big"),
        (Column("size", ColumnType.INTEGER, nullable=True), 1.5),
        (Column("published", ColumnType.BOOLEAN), "maybe"),
        (Column("date", ColumnType.DATETIME, nullable=True), {"day": 1}),
    ],
)
def test_coerce_row_rejects_mismatched_values(column, value):
    with pytest.raises(SchemaError) as excinfo:
        coerce_row({column.name: value}, (column,), path="blog/bad.md")

    assert excinfo.value.column == column.name
    assert excinfo.value.path == "blog/bad.md"


def test_wrongly_typed_entry_is_skipped(tmp_path, caplog):
    root = tmp_path / "collections"
    _write(root / "blog" / "good.md", "---\ntitle: Good\n---\n")
    _write(root / "blog" / "bad.md", "---\nblueprint: [a, b]\n---\n")

    with caplog.at_level(logging.WARNING, logger="flatcache.services.loader_service"):
        result = rebuild(
            EntryType(LocalStorage(root)), db_path=tmp_path / "cache.db", registry=SchemaRegistry()
        )

    assert result.rows == 1
    assert result.skipped == 1
    assert "bad.md" in caplog.text
    assert [row["slug"] for row in _rows(tmp_path / "cache.db", "entries")] == ["good"]


def test_wrongly_typed_asset_meta_is_skipped(tmp_path):
    root = tmp_path / "assets"
    _write(root / "hero.jpg", "jpg")
    _write(root / "logo.png", "png")
    _write(root / ".meta" / "logo.png.yaml", "size: big\n")
    asset_type = AssetType({"main": LocalStorage(root)}, meta_cache=MetaCache())

    result = rebuild(asset_type, db_path=tmp_path / "cache.db", registry=SchemaRegistry())

    assert result.rows == 1
    assert result.skipped == 1
    assert _rows(tmp_path / "cache.db", "assets")[0]["basename"] == "hero.jpg"


def test_numeric_and_text_ids_collide(tmp_path):
    root = tmp_path / "collections"
    _write(root / "blog" / "a.md", "---\nid: 5\n---\n")
    _write(root / "blog" / "b.md", "---\nid: '5'\n---\n")

    result = rebuild(
        EntryType(LocalStorage(root)), db_path=tmp_path / "cache.db", registry=SchemaRegistry()
    )

    assert result.rows == 1
    assert result.skipped == 1
    assert _rows(tmp_path / "cache.db", "entries")[0]["id"] == "5"
