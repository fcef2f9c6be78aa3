import pytest

import flatcache.cache as cache
from flatcache.schema import Column, ColumnType

BLUEPRINT = (
    Column("id", unique=True),
    Column("collection", index=True),
    Column("published", ColumnType.BOOLEAN, default=True),
    Column("data", ColumnType.JSON, nullable=True),
    Column("date", ColumnType.DATETIME, nullable=True),
)


def _open(tmp_path):
    conn = cache.connect(tmp_path / "cache.db")
    cache.recreate_table(conn, "entries", BLUEPRINT)
    return conn


def test_cache_db_path_uses_cache_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(cache, "CACHE_DIR", tmp_path / "data")

    db_path = cache.cache_db_path()

    assert db_path == tmp_path / "data" / cache.DB_FILENAME
    assert db_path.parent.is_dir()


def test_cache_dir_context_overrides(tmp_path, monkeypatch):
    monkeypatch.setattr(cache, "CACHE_DIR", tmp_path / "default")

    with cache.cache_dir_context(tmp_path / "override"):
        assert cache.cache_db_path().parent == (tmp_path / "override").resolve()
    assert cache.cache_db_path().parent == tmp_path / "default"


def test_create_table_and_list_columns(tmp_path):
    conn = _open(tmp_path)

    assert cache.table_exists(conn, "entries")
    assert cache.list_columns(conn, "entries") == [
        "id",
        "collection",
        "published",
        "data",
        "date",
    ]
    conn.close()
    assert cache.has_table(tmp_path / "cache.db", "entries")
    assert not cache.has_table(tmp_path / "cache.db", "assets")
    assert not cache.has_table(tmp_path / "missing.db", "entries")


def test_bulk_insert_and_fetch_round_trip_values(tmp_path):
    conn = _open(tmp_path)
    with conn:
        inserted = cache.bulk_insert(
            conn,
            "entries",
            [
                {"id": "a", "collection": "blog", "published": False, "data": {"title": "Hi"}},
                {"id": "b", "collection": "pages", "published": True, "data": None},
            ],
            BLUEPRINT,
        )

    assert inserted == 2
    row = cache.fetch_by_key(conn, "entries", "a", BLUEPRINT)
    assert row["published"] is False
    assert row["data"] == {"title": "Hi"}
    assert cache.fetch_by_key(conn, "entries", "zzz", BLUEPRINT) is None
    assert cache.count_rows(conn, "entries") == 2
    conn.close()


def test_fetch_rows_filters_and_limits(tmp_path):
    conn = _open(tmp_path)
    with conn:
        cache.bulk_insert(
            conn,
            "entries",
            [
                {"id": str(idx), "collection": "blog" if idx % 2 else "pages", "published": True}
                for idx in range(5)
            ],
            BLUEPRINT,
        )

    blog = cache.fetch_rows(conn, "entries", BLUEPRINT, filters={"collection": "blog"})
    assert [row["id"] for row in blog] == ["1", "3"]
    assert len(cache.fetch_rows(conn, "entries", BLUEPRINT, limit=2)) == 2
    assert cache.fetch_rows(conn, "entries", BLUEPRINT, filters={"date": None}, limit=1)
    with pytest.raises(KeyError):
        cache.fetch_rows(conn, "entries", BLUEPRINT, filters={"nope": 1})
    conn.close()


def test_update_and_delete_by_key(tmp_path):
    conn = _open(tmp_path)
    with conn:
        cache.bulk_insert(conn, "entries", [{"id": "a", "collection": "blog"}], BLUEPRINT)
        updated = cache.update_by_key(
            conn, "entries", "a", {"collection": "news", "unknown": 1}, BLUEPRINT
        )

    assert updated == 1
    assert cache.fetch_by_key(conn, "entries", "a", BLUEPRINT)["collection"] == "news"
    assert cache.update_by_key(conn, "entries", "a", {"unknown": 1}, BLUEPRINT) == 0
    with conn:
        assert cache.delete_by_key(conn, "entries", "a") == 1
    assert cache.count_rows(conn, "entries") == 0
    conn.close()


def test_default_applies_when_column_omitted(tmp_path):
    conn = _open(tmp_path)
    with conn:
        conn.execute("INSERT INTO entries (id, collection) VALUES ('x', 'blog')")

    assert cache.fetch_by_key(conn, "entries", "x", BLUEPRINT)["published"] is True
    conn.close()


def test_recreate_table_discards_rows(tmp_path):
    conn = _open(tmp_path)
    with conn:
        cache.bulk_insert(conn, "entries", [{"id": "a", "collection": "blog"}], BLUEPRINT)

    cache.recreate_table(conn, "entries", BLUEPRINT)

    assert cache.count_rows(conn, "entries") == 0
    conn.close()


def test_database_mtime_and_clear(tmp_path):
    db_path = tmp_path / "cache.db"
    assert cache.database_mtime(db_path) is None
    _open(tmp_path).close()

    assert cache.database_mtime(db_path) is not None
    assert cache.clear_database(db_path) is True
    assert not db_path.exists()
    assert cache.clear_database(db_path) is False


def test_encode_value_handles_json_dates():
    import datetime as dt

    encoded = cache.encode_value(
        Column("data", ColumnType.JSON), {"when": dt.date(2024, 1, 1)}
    )

    assert encoded == '{"when": "2024-01-01"}'
    assert cache.encode_value(Column("published", ColumnType.BOOLEAN), False) == 0
    assert cache.encode_value(Column("date", ColumnType.DATETIME), dt.date(2024, 1, 1)) == "2024-01-01"
