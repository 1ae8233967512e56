"""
Continue-watching view for watchsync.

The view is recomputed from the whole progress map every time it is asked
for. Nothing here mutates the map: finished titles that drop out of the view
are still available through the store.
"""

import logging
from datetime import timedelta

from watchsync.progress_keys import MOVIE, TV
from watchsync.utils.timestamps import EPOCH, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

COMPLETED_THRESHOLD = 95
NEARLY_FINISHED_MIN = 70
EVICT_AFTER = timedelta(days=7)
RECENT_WINDOW = timedelta(hours=24)

TITLE_FIELDS = ("title", "name", "original_title", "original_name")
SHOW_TITLE_FIELDS = ("name", "title", "original_name", "original_title")


def resolve_title(data, content_type, fields=TITLE_FIELDS):
    """Return the first non-empty name field, falling back to a type-specific placeholder."""
    for field in fields:
        value = data.get(field)
        if value:
            return value
    return "Unknown Series" if content_type == TV else "Unknown Movie"


def _progress_value(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return value


def project_entry(record):
    """Project one progress record to a continue-watching entry."""
    content_type = record.get("type")
    entry = {
        "id": record.get("id"),
        "title": resolve_title(record, content_type),
        "type": content_type,
        "poster_path": record.get("poster_path"),
        "backdrop_path": record.get("backdrop_path"),
        "lastWatched": record.get("lastWatched"),
        "progress": _progress_value(record.get("progress")),
    }
    if content_type == TV:
        entry["season"] = record.get("season")
        entry["episode"] = record.get("episode")
        entry["episodeTitle"] = record.get("episodeTitle")
    return entry


def _watched_at(entry):
    return parse_timestamp(entry.get("lastWatched")) or EPOCH


def is_evicted(entry, now):
    """Finished (>= 95%) and last touched more than a week ago."""
    return entry["progress"] >= COMPLETED_THRESHOLD and _watched_at(entry) < now - EVICT_AFTER


def is_nearly_finished(entry):
    return NEARLY_FINISHED_MIN <= entry["progress"] < COMPLETED_THRESHOLD


def _sort_key(entry, now):
    watched_at = _watched_at(entry)
    recent = watched_at > now - RECENT_WINDOW
    return (
        0 if recent else 1,
        0 if is_nearly_finished(entry) else 1,
        -(watched_at - EPOCH).total_seconds(),
    )


def build_continue_watching(progress_map, now=None):
    """
    Derive the continue-watching list from a progress map.

    Args:
        progress_map (dict): progress key -> progress record
        now (datetime, optional): Reference time, defaults to the current UTC time

    Returns:
        list: Entries with at most one episode per show, ordered by recency
            tier, then nearly-finished first, then most recently watched.
    """
    if not progress_map:
        return []
    now = now or utcnow()

    candidates = []
    for key, record in progress_map.items():
        if not isinstance(record, dict):
            logger.warning(f"Skipping malformed progress record under '{key}': {record!r}")
            continue
        entry = project_entry(record)
        if is_evicted(entry, now):
            continue
        candidates.append(entry)

    candidates.sort(key=_watched_at, reverse=True)

    movies = []
    latest_episode = {}
    for entry in candidates:
        if entry["type"] == TV:
            held = latest_episode.get(entry["id"])
            if held is None or _watched_at(entry) > _watched_at(held):
                latest_episode[entry["id"]] = entry
        else:
            if entry["type"] != MOVIE:
                logger.debug(f"Unknown content type {entry['type']!r} for id {entry['id']}, listing it individually")
            movies.append(entry)

    grouped = movies + list(latest_episode.values())
    grouped.sort(key=lambda entry: _sort_key(entry, now))
    return grouped
