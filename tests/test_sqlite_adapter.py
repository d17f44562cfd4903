"""Schema-level checks for the SQLite document store."""

import sqlite3

import pytest

from conftest import unit

URL = "https://example.edu/parking"


async def test_chunk_needs_an_owning_page(adapter):
    with pytest.raises(sqlite3.IntegrityError):
        with adapter.conn:
            adapter.conn.execute(
                "INSERT INTO chunks (url, idx, text) VALUES (?, ?, ?)",
                ("https://example.edu/orphan", 0, "Orphan chunk"),
            )


async def test_deleting_a_page_removes_its_chunks(adapter):
    await adapter.replace_page(URL, "Parking", "hash", [("Lot B permits", unit(0)), ("Lot C permits", unit(1))])

    with adapter.conn:
        adapter.conn.execute("DELETE FROM pages WHERE url = ?", (URL,))

    assert await adapter.list_chunks(URL) == []


async def test_replacing_a_page_keeps_one_row(adapter):
    await adapter.replace_page(URL, "Parking", "first", [("Lot B permits", unit(0))])
    await adapter.replace_page(URL, "Parking", "second", [("Lot C permits", unit(1))])

    page = await adapter.get_page(URL)
    assert page.content_hash == "second"
    assert [c.text for c in await adapter.list_chunks(URL)] == ["Lot C permits"]
    stats = await adapter.get_database_stats()
    assert (stats["page_count"], stats["chunk_count"]) == (1, 1)
