from moku_explore.stores import MemoryHistoryStore, MemorySettingsStore

from conftest import history_entry


def test_rereading_newest_chapter_updates_in_place():
    store = MemoryHistoryStore()
    store.add(history_entry(1, hours_ago=2, chapter_id=10, chapter_name="Ch. 1", page_number=3))
    store.add(history_entry(1, hours_ago=0, chapter_id=10, chapter_name="ignored", page_number=9))

    entries = store.entries()
    assert len(entries) == 1
    assert entries[0].page_number == 9
    assert entries[0].chapter_name == "Ch. 1"


def test_other_chapter_moves_to_front_without_duplicates():
    store = MemoryHistoryStore()
    store.add(history_entry(1, chapter_id=10))
    store.add(history_entry(2, chapter_id=20))
    store.add(history_entry(1, chapter_id=10, page_number=5))

    assert [(e.manga_id, e.chapter_id) for e in store.entries()] == [(1, 10), (2, 20)]
    assert store.entries()[0].page_number == 5


def test_history_is_capped():
    store = MemoryHistoryStore(limit=3)
    for chapter in range(5):
        store.add(history_entry(chapter, chapter_id=chapter))
    assert [e.chapter_id for e in store.entries()] == [4, 3, 2]


def test_subscribers_hear_every_change():
    store = MemoryHistoryStore()
    heard = []
    unsubscribe = store.subscribe(lambda: heard.append(len(store.entries())))
    store.add(history_entry(1, chapter_id=1))
    store.clear()
    unsubscribe()
    store.add(history_entry(2, chapter_id=2))
    assert heard == [1, 0]


def test_settings_default_language():
    assert MemorySettingsStore("").preferred_lang == "en"
    assert MemorySettingsStore("fr").preferred_lang == "fr"
