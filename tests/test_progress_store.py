# tests/test_progress_store.py
from unittest.mock import MagicMock

import pytest

from watchsync.progress_store import ProgressStore, extract_image_path
from watchsync.utils.timestamps import parse_timestamp

# --- Fixtures ---

@pytest.fixture
def store(clock):
    return ProgressStore(clock=clock)

# --- Tests for extract_image_path ---

@pytest.mark.parametrize("url, expected", [
    ("/abc.jpg", "/abc.jpg"),
    ("https://image.tmdb.org/t/p/w500/abc.jpg", "/abc.jpg"),
    ("abc.jpg", "/abc.jpg"),
    ("https://example.com/abc.jpg", None),
    (None, None),
    ("", None),
])
def test_extract_image_path(url, expected):
    """Image references reduce to a TMDB path."""
    assert extract_image_path(url) == expected

# --- Tests for start_movie / update_progress ---

def test_start_movie_creates_record(store, clock):
    """start_movie stores a fresh record."""
    record = store.start_movie({"id": "tt1", "title": "X", "poster": "https://image.tmdb.org/t/p/w342/p.jpg"})
    assert record["id"] == "tt1"
    assert record["type"] == "movie"
    assert record["title"] == "X"
    assert record["progress"] == 0
    assert record["poster_path"] == "/p.jpg"
    assert record["lastWatched"] == "2024-05-01T12:00:00.000Z"
    assert "movie_tt1" in store

def test_start_movie_without_title_uses_placeholder(store):
    """A movie without a title gets a placeholder."""
    assert store.start_movie({"id": 5})["title"] == "Unknown Movie"

def test_start_movie_without_id_is_rejected(store):
    """A movie without an id is not stored."""
    assert store.start_movie({"title": "No id"}) is None
    assert len(store) == 0

def test_progress_never_decreases(store):
    """Scenario: 40% then 20% leaves 40%."""
    store.start_movie({"id": "tt1", "title": "X"})
    assert store.update_progress("tt1", "movie", None, None, 40)["progress"] == 40
    store.update_progress("tt1", "movie", None, None, 20)
    assert store.get_progress_record("movie_tt1")["progress"] == 40

def test_progress_is_clamped(store):
    """Progress is clamped to 0-100."""
    store.start_movie({"id": 1})
    assert store.update_progress(1, "movie", progress=150)["progress"] == 100
    store.start_movie({"id": 2})
    assert store.update_progress(2, "movie", progress=-5)["progress"] == 0

@pytest.mark.parametrize("value", [True, "abc", float("nan"), None])
def test_invalid_progress_values_are_rejected(store, value):
    """Non-numeric progress is rejected."""
    store.start_movie({"id": 1})
    assert store.update_progress(1, "movie", progress=value) is None
    assert store.get_progress_record("movie_1")["progress"] == 0

def test_update_without_record_is_a_noop(store):
    """Updating an untracked title does nothing."""
    assert store.update_progress(99, "movie", progress=50) is None
    assert len(store) == 0

def test_restarting_a_title_keeps_its_progress(store):
    """Restarting a title keeps its progress."""
    store.start_movie({"id": 1})
    store.update_progress(1, "movie", progress=60)
    assert store.start_movie({"id": 1, "title": "Again"})["progress"] == 60

# --- Tests for timestamps ---

def test_timestamps_strictly_increase_with_a_frozen_clock(store):
    """Timestamps advance by a millisecond when the clock stands still."""
    first = store.start_movie({"id": 1})["lastWatched"]
    second = store.update_progress(1, "movie", progress=10)["lastWatched"]
    third = store.start_movie({"id": 2})["lastWatched"]
    assert parse_timestamp(first) < parse_timestamp(second) < parse_timestamp(third)
    assert second == "2024-05-01T12:00:00.001Z"

def test_timestamps_follow_the_clock(store, clock):
    """Timestamps follow the clock when it moves."""
    store.start_movie({"id": 1})
    clock.tick(minutes=5)
    assert store.update_progress(1, "movie", progress=10)["lastWatched"] == "2024-05-01T12:05:00.000Z"

# --- Tests for start_episode ---

def test_latest_episode_wins_in_view(store):
    """Scenario: two episodes of one show, one list entry, both records kept."""
    store.start_episode({"id": 9, "name": "Show"}, 1, 1)
    store.start_episode({"id": 9, "name": "Show"}, 1, 2)

    view = store.continue_watching(now=parse_timestamp("2024-05-01T12:01:00Z"))
    assert len(view) == 1
    assert view[0]["id"] == 9
    assert (view[0]["season"], view[0]["episode"]) == (1, 2)
    assert "tv_9_1_1" in store
    assert "tv_9_1_2" in store

def test_restarted_episode_becomes_latest_even_against_future_stamps(store):
    """A restarted episode is stamped after its show's other episodes."""
    store.replace_all({
        "tv_9_1_3": {"id": 9, "type": "tv", "season": 1, "episode": 3, "progress": 10,
                     "lastWatched": "2030-01-01T00:00:00.000Z"},
    })
    record = store.start_episode({"id": 9}, 1, 1)
    assert record["lastWatched"] == "2030-01-01T00:00:00.001Z"

def test_future_remote_stamp_does_not_leak_into_other_titles(store, clock):
    """A device clock running ahead only affects its own show, not later unrelated writes."""
    store.replace_all({
        "tv_9_1_1": {"id": 9, "type": "tv", "season": 1, "episode": 1, "progress": 10,
                     "lastWatched": "2025-05-01T12:00:00.000Z"},
    })
    assert store.start_episode({"id": 9}, 1, 2)["lastWatched"] == "2025-05-01T12:00:00.001Z"

    movie = store.start_movie({"id": 1})
    assert parse_timestamp(movie["lastWatched"]) < parse_timestamp("2024-05-01T12:00:01Z")
    assert movie["lastWatched"] == "2024-05-01T12:00:00.001Z"

    clock.tick(minutes=1)
    other_show = store.start_episode({"id": 10}, 1, 1)
    assert other_show["lastWatched"] == "2024-05-01T12:01:00.000Z"

def test_start_episode_fields(store):
    """start_episode fills titles and the episode title."""
    record = store.start_episode({"id": 9, "original_name": "Orig"}, 2, 5, {"name": "Finale"})
    assert record["title"] == "Orig"
    assert record["episodeTitle"] == "Finale"
    assert store.start_episode({"id": 10}, 1, 3)["episodeTitle"] == "Episode 3"
    assert store.start_episode({"id": 11}, 1, 3)["title"] == "Unknown Series"

def test_start_episode_missing_numbers(store):
    """Episodes need a season and an episode number."""
    assert store.start_episode({"id": 9}, None, 1) is None
    assert store.start_episode({"id": 9}, 1, None) is None
    assert len(store) == 0

# --- Tests for remove / restore / clear ---

def test_remove_tv_removes_every_episode_of_the_show(store):
    """Removing a show removes all its episodes."""
    store.start_episode({"id": 9}, 1, 1)
    store.start_episode({"id": 9}, 1, 2)
    store.start_episode({"id": 90}, 1, 1)
    removed = store.remove(9, "tv", 1, 2)
    assert len(removed) == 2
    assert list(store.snapshot()) == ["tv_90_1_1"]

def test_remove_unknown_title(store):
    """Removing an unknown title returns nothing."""
    assert store.remove(1, "movie") == []
    assert store.remove(None, "movie") == []

def test_restore_round_trips_a_view_entry(store):
    """A removed list entry can be restored."""
    store.start_episode({"id": 9, "name": "Show"}, 1, 2)
    store.update_progress(9, "tv", 1, 2, 30)
    entry = store.continue_watching()[0]
    store.remove(9, "tv")

    restored = store.restore(entry)
    assert restored["progress"] == 30
    assert restored["lastWatched"] == entry["lastWatched"]
    assert store.get_progress_record("tv_9_1_2")["episodeTitle"] == "Episode 2"

def test_clear_by_type(store):
    """Clearing by type keeps the other type."""
    store.start_movie({"id": 1})
    store.start_episode({"id": 9}, 1, 1)
    assert len(store.clear_movies()) == 1
    assert list(store.snapshot()) == ["tv_9_1_1"]
    store.start_movie({"id": 1})
    assert len(store.clear_tv_shows()) == 1
    assert list(store.snapshot()) == ["movie_1"]
    store.clear_all()
    assert len(store) == 0

# --- Tests for notifications and snapshots ---

def test_mutation_callback_receives_operation_and_keys(store):
    """The callback receives each edit and its keys."""
    callback = MagicMock()
    store.set_mutation_callback(callback)
    store.start_movie({"id": 1})
    store.update_progress(1, "movie", progress=5)
    store.remove(1, "movie")
    assert [c.args for c in callback.call_args_list] == [
        ("start_movie", ["movie_1"]),
        ("update_progress", ["movie_1"]),
        ("remove", ["movie_1"]),
    ]

def test_replace_all_does_not_notify(store):
    """replace_all does not fire the callback."""
    callback = MagicMock()
    store.set_mutation_callback(callback)
    assert store.replace_all({"movie_1": {"id": 1, "type": "movie", "progress": 1}}) is True
    assert store.replace_all(["not", "a", "map"]) is False
    callback.assert_not_called()
    assert len(store) == 1

def test_failing_callback_does_not_break_edits(store):
    """A failing callback does not undo the edit."""
    store.set_mutation_callback(MagicMock(side_effect=RuntimeError("boom")))
    assert store.start_movie({"id": 1}) is not None
    assert "movie_1" in store

def test_snapshot_is_a_copy(store):
    """Snapshots are deep copies."""
    store.start_movie({"id": 1})
    snapshot = store.snapshot()
    snapshot["movie_1"]["progress"] = 99
    assert store.get_progress_record("movie_1")["progress"] == 0
