from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from publisher_info_store.constants import COMPATIBLE_SCHEMA_VERSION, CURRENT_SCHEMA_VERSION
from publisher_info_store.persistence import schema

from . import index_names, meta_values, raw_connect, table_names

if TYPE_CHECKING:
    from pathlib import Path


def test_create_schema_is_idempotent(tmp_path: Path) -> None:
    conn = raw_connect(tmp_path / "store.sqlite")
    try:
        created = schema.create_schema(conn)
        assert set(created) == {table.name for table in schema.TABLES} | {
            index.name for index in schema.INDEXES
        }
        assert schema.create_schema(conn) == ()
        assert {table.name for table in schema.TABLES}.issubset(table_names(conn))
        assert {index.name for index in schema.INDEXES} == index_names(conn)
    finally:
        conn.close()


def test_ensure_table_and_index_report_creation(tmp_path: Path) -> None:
    conn = raw_connect(tmp_path / "store.sqlite")
    try:
        assert schema.ensure_table(conn, schema.PUBLISHER_INFO_SPEC) is True
        assert schema.ensure_table(conn, schema.PUBLISHER_INFO_SPEC) is False
        assert schema.ensure_table(conn, schema.ACTIVITY_INFO_SPEC) is True
        assert schema.ensure_index(conn, schema.ACTIVITY_INFO_INDEX) is True
        assert schema.ensure_index(conn, schema.ACTIVITY_INFO_INDEX) is False
        assert schema.column_exists(conn, "activity_info", "visits")
        assert not schema.column_exists(conn, "activity_info", "value")
    finally:
        conn.close()


def test_init_meta_seeds_versions_once(tmp_path: Path) -> None:
    conn = raw_connect(tmp_path / "store.sqlite")
    try:
        assert schema.stored_version(conn) is None
        assert schema.init_meta(conn) is True
        assert meta_values(conn) == {
            "version": str(CURRENT_SCHEMA_VERSION),
            "last_compatible_version": str(COMPATIBLE_SCHEMA_VERSION),
        }

        schema.set_stored_version(conn, 2)
        assert schema.init_meta(conn) is False
        assert schema.stored_version(conn) == 2
        assert schema.stored_compatible_version(conn) == COMPATIBLE_SCHEMA_VERSION
    finally:
        conn.close()


def test_non_integer_meta_value_is_rejected(tmp_path: Path) -> None:
    conn = raw_connect(tmp_path / "store.sqlite")
    try:
        schema.init_meta(conn)
        conn.execute("UPDATE meta SET value = 'three' WHERE key = 'version'")
        with pytest.raises(ValueError, match="meta.version"):
            schema.stored_version(conn)
    finally:
        conn.close()


@pytest.mark.parametrize("name", ["", "1table", "drop table;", "a-b", "x y"])
def test_validate_identifier_rejects_unsafe_names(name: str) -> None:
    with pytest.raises(ValueError, match="invalid SQL identifier"):
        schema.validate_identifier(name)
