import asyncio

from models import ThreadRecord
from views import dead_thread_renderer, get_page, page_count, thread_list_renderer


def _record(n: int, **overrides) -> ThreadRecord:
    values = dict(
        id=n,
        thread_id=str(1000 + n),
        server_id=1,
        name=f"thread-{n}",
        parent_id="555",
        locked=False,
        archived=False,
        auto_archive_duration=1440,
        archive_timestamp=None,
        message_count=3,
        member_count=2,
        created_at="2026-01-01T00:00:00.000Z",
        updated_at="2026-01-01T00:00:00.000Z",
    )
    values.update(overrides)
    return ThreadRecord(**values)


def test_page_count() -> None:
    assert page_count(0, 10) == 1
    assert page_count(10, 10) == 1
    assert page_count(11, 10) == 2
    assert page_count(17, 8) == 3


def test_get_page_slices_and_clamps() -> None:
    items = list(range(23))

    last = get_page(items, 3, 10)
    assert last.items == [20, 21, 22]
    assert (last.start, last.end, last.total_pages) == (20, 23, 3)

    assert get_page(items, 9, 10).number == 3
    assert get_page(items, 0, 10).items == list(range(10))


def test_thread_list_embed() -> None:
    threads = [_record(n) for n in range(1, 13)]
    threads[10] = _record(11, locked=True, archived=True, name=None)
    page = get_page(threads, 2, 10)

    embed = asyncio.run(thread_list_renderer("Guild")(page))

    assert embed.title == "📋 Thread List - Guild"
    assert embed.description == "Showing threads 11-12 of 12"
    assert embed.footer.text == "Page 2/2 • AliveThread Bot"
    assert [f.name for f in embed.fields] == ["11. Unnamed Thread 🔒", "12. thread-12"]
    assert embed.fields[0].value.startswith("🗃️ Archived (3 msgs)")


def test_dead_thread_embed_shows_archive_time() -> None:
    page = get_page([_record(1, archived=True, archive_timestamp="2026-02-01T10:00:00+00:00")], 1, 10)

    embed = asyncio.run(dead_thread_renderer("Guild")(page))

    assert "**Archived:** 2026-02-01T10:00:00+00:00" in embed.fields[0].value
