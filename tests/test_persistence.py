# tests/test_persistence.py
import json
from unittest.mock import MagicMock

import pytest

from watchsync.exceptions import PersistenceError
from watchsync.persistence import (
    FileSlot,
    MemorySlot,
    PersistenceBridge,
    PROGRESS_SLOT_KEY,
    SAVE_TASK,
    thumbnail_key,
)
from watchsync.progress_store import ProgressStore

# --- Fixtures ---

@pytest.fixture
def store(clock):
    return ProgressStore(clock=clock)

@pytest.fixture
def bridge(slot, store, scheduler):
    return PersistenceBridge(slot, store, scheduler, save_delay=2.0)

# --- Tests for save/load ---

def test_save_then_load(bridge, slot, store):
    """A saved map loads back unchanged."""
    store.start_movie({"id": 1, "title": "X"})
    assert bridge.save_now() is True
    assert json.loads(slot.get(PROGRESS_SLOT_KEY))["movie_1"]["title"] == "X"
    assert bridge.load_now() == store.snapshot()

def test_load_empty_slot(bridge):
    """An empty slot loads as an empty map."""
    assert bridge.load_now() == {}

@pytest.mark.parametrize("raw", ["{not json", "[1, 2]", "null", '"text"'])
def test_load_malformed_slot_returns_empty(slot, bridge, raw):
    """Malformed stored data loads as an empty map."""
    slot.set(PROGRESS_SLOT_KEY, raw)
    assert bridge.load_now() == {}

def test_load_failure_returns_empty(store, scheduler):
    """A failing slot read loads as an empty map."""
    broken_slot = MagicMock()
    broken_slot.get.side_effect = PersistenceError("disk gone")
    assert PersistenceBridge(broken_slot, store, scheduler).load_now() == {}

def test_save_failure_returns_false(store, scheduler):
    """A failing slot write returns False."""
    broken_slot = MagicMock()
    broken_slot.set.side_effect = PersistenceError("read-only")
    assert PersistenceBridge(broken_slot, store, scheduler).save_now({"movie_1": {}}) is False

# --- Tests for the debounced save ---

def test_saves_are_debounced(bridge, slot, store, scheduler):
    """Several edits lead to a single save."""
    after_save = MagicMock()
    bridge.after_save = after_save
    store.start_movie({"id": 1})
    bridge.schedule_save()
    scheduler.advance(1.5)
    bridge.schedule_save()
    scheduler.advance(1.5)
    assert slot.get(PROGRESS_SLOT_KEY) is None
    assert scheduler.is_scheduled(SAVE_TASK)

    scheduler.advance(0.5)
    assert "movie_1" in json.loads(slot.get(PROGRESS_SLOT_KEY))
    after_save.assert_called_once_with(store.snapshot())

def test_cancel_pending(bridge, slot, scheduler):
    """cancel_pending drops a scheduled save."""
    bridge.schedule_save()
    bridge.cancel_pending()
    scheduler.advance(10)
    assert slot.get(PROGRESS_SLOT_KEY) is None

# --- Tests for thumbnails ---

def test_thumbnail_keys():
    """Thumbnail keys follow the cache naming."""
    assert thumbnail_key(5, "movie") == "continue_watching_image_5_movie_movie_movie"
    assert thumbnail_key(9, "tv", 1, 2) == "continue_watching_image_9_tv_1_2"
    assert thumbnail_key(9, "tv") == "continue_watching_image_9_tv_unknown_unknown"

def test_thumbnail_helpers(bridge, slot):
    """Thumbnails can be stored and forgotten."""
    slot.set(thumbnail_key(5, "movie"), "https://img/5.jpg")
    slot.set(thumbnail_key(9, "tv", 1, 2), "https://img/9.jpg")
    slot.set(PROGRESS_SLOT_KEY, "{}")
    assert bridge.get_thumbnail_url(5, "movie") == "https://img/5.jpg"

    bridge.forget_thumbnail(5, "movie")
    assert bridge.get_thumbnail_url(5, "movie") is None

    bridge.forget_all_thumbnails()
    assert slot.keys() == [PROGRESS_SLOT_KEY]

# --- Tests for FileSlot ---

def test_file_slot_persists_across_instances(tmp_path):
    """FileSlot values survive a new instance."""
    slot = FileSlot(tmp_path / "data")
    slot.set("viewingProgress", '{"movie_1": {}}')
    slot.set("other", "value")
    slot.remove("other")

    reopened = FileSlot(tmp_path / "data")
    assert reopened.get("viewingProgress") == '{"movie_1": {}}'
    assert reopened.keys() == ["viewingProgress"]

def test_file_slot_ignores_corrupt_file(tmp_path):
    """A corrupt slot file reads as empty."""
    (tmp_path / "local_storage.json").write_text("{corrupt", encoding="utf-8")
    slot = FileSlot(tmp_path)
    assert slot.keys() == []

def test_file_slot_rejects_non_string_values(tmp_path):
    """FileSlot only stores strings."""
    slot = FileSlot(tmp_path)
    with pytest.raises(PersistenceError):
        slot.set("viewingProgress", {"movie_1": {}})

def test_file_slot_rolls_back_on_write_failure(tmp_path, mocker):
    """A failed write raises PersistenceError and keeps the old value."""
    slot = FileSlot(tmp_path)
    slot.set("key", "old")
    mocker.patch("watchsync.persistence.os.replace", side_effect=OSError("disk full"))
    with pytest.raises(PersistenceError):
        slot.set("key", "new")
    assert slot.get("key") == "old"

def test_memory_slot():
    """MemorySlot supports get, set and remove."""
    slot = MemorySlot({"a": "1"})
    slot.set("b", "2")
    slot.remove("a")
    slot.remove("missing")
    assert slot.keys() == ["b"]
