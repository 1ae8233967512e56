"""
In-memory progress store for watchsync.

Holds the progress map for the running process. All local edits go through
here; inbound snapshots from the backend replace the map wholesale through
replace_all().
"""

import copy
import logging
import threading

from watchsync.exceptions import InvalidKeyError
from watchsync.progress_keys import MOVIE, TV, CONTENT_TYPES, encode_progress_key, get_progress_for_content, get_show_progress
from watchsync.reconciliation import SHOW_TITLE_FIELDS, TITLE_FIELDS, build_continue_watching, resolve_title
from watchsync.utils.timestamps import ONE_MILLISECOND, format_timestamp, parse_timestamp, truncate_to_millis, utcnow

logger = logging.getLogger(__name__)


def extract_image_path(url):
    """
    Reduce an image reference to a TMDB-style path.

    '/abc.jpg' is returned as-is, 'https://image.tmdb.org/t/p/w500/abc.jpg'
    becomes '/abc.jpg' and a bare 'abc.jpg' gets a leading slash.
    """
    if not url or not isinstance(url, str):
        return None
    if url.startswith("/"):
        return url
    if url.startswith("http"):
        marker = "/t/p/"
        idx = url.find(marker)
        if idx == -1:
            return None
        size_and_path = url[idx + len(marker):]
        _, _, path = size_and_path.partition("/")
        return f"/{path}" if path else None
    return f"/{url}"


def _clamp_progress(value):
    if isinstance(value, bool):
        raise ValueError(f"progress must be a number, got {value!r}")
    progress = float(value)
    if progress != progress:  # NaN
        raise ValueError("progress must be a number, got NaN")
    progress = min(100.0, max(0.0, progress))
    return int(progress) if progress.is_integer() else progress


class ProgressStore:
    """Thread-safe mapping of progress key -> progress record"""

    def __init__(self, clock=None):
        self._records = {}
        self._lock = threading.RLock()
        self._clock = clock or utcnow
        self._last_issued = None
        self._mutation_callback = None

    def set_mutation_callback(self, callback):
        """Set a callback invoked as callback(operation, keys) after every accepted local edit"""
        self._mutation_callback = callback

    def _notify(self, operation, keys):
        if not self._mutation_callback:
            return
        try:
            self._mutation_callback(operation, keys)
        except Exception as e:
            logger.error(f"Mutation callback failed after '{operation}': {e}", exc_info=True)

    def _stamp(self, after=None):
        """
        Current time as a record timestamp.

        Clock readings strictly increase across the store. Stamps in `after`
        (the record's own or its show's) only lift the returned value; they
        never move the store-wide clock, so one future-dated remote record
        cannot push unrelated writes ahead of real time.
        """
        moment = truncate_to_millis(self._clock())
        if self._last_issued is not None and moment <= self._last_issued:
            moment = self._last_issued + ONE_MILLISECOND
        self._last_issued = moment

        floor = None
        for previous in after or ():
            parsed = parse_timestamp(previous)
            if parsed and (floor is None or parsed > floor):
                floor = parsed
        if floor is not None and moment <= floor:
            return format_timestamp(truncate_to_millis(floor) + ONE_MILLISECOND)
        return format_timestamp(moment)

    # --- Reads ---

    def get_progress_record(self, progress_key):
        with self._lock:
            record = self._records.get(progress_key)
            return copy.deepcopy(record) if record is not None else None

    def get_progress_for(self, content_id, content_type, season=None, episode=None):
        with self._lock:
            record = get_progress_for_content(self._records, content_id, content_type, season, episode)
            return copy.deepcopy(record) if record is not None else None

    def snapshot(self):
        """Deep copy of the whole progress map"""
        with self._lock:
            return copy.deepcopy(self._records)

    def continue_watching(self, now=None):
        return build_continue_watching(self.snapshot(), now=now)

    def __len__(self):
        with self._lock:
            return len(self._records)

    def __contains__(self, progress_key):
        with self._lock:
            return progress_key in self._records

    # --- Local edits ---

    def start_movie(self, movie):
        """
        Start (or resume) tracking a movie.

        Args:
            movie (dict): Movie metadata with 'id' and any of 'title', 'name',
                'original_title', 'original_name', 'poster_path'/'poster',
                'backdrop_path'/'backdrop'

        Returns:
            dict: The stored record, or None if the metadata has no id
        """
        movie = movie or {}
        try:
            progress_key = encode_progress_key(movie.get("id"), MOVIE)
        except InvalidKeyError as e:
            logger.warning(f"start_movie: invalid movie data: {e}")
            return None

        with self._lock:
            existing = self._records.get(progress_key) or {}
            record = {
                "id": movie["id"],
                "title": resolve_title(movie, MOVIE, TITLE_FIELDS),
                "type": MOVIE,
                "poster_path": extract_image_path(movie.get("poster_path") or movie.get("poster")),
                "backdrop_path": extract_image_path(movie.get("backdrop_path") or movie.get("backdrop")),
                "lastWatched": self._stamp(after=[existing.get("lastWatched")]),
                "progress": existing.get("progress") or 0,
            }
            self._records[progress_key] = record
            result = copy.deepcopy(record)

        logger.info(f"Started tracking movie '{record['title']}' ({progress_key})")
        self._notify("start_movie", [progress_key])
        return result

    def start_episode(self, show, season, episode, episode_meta=None):
        """
        Start (or resume) tracking a TV episode.

        The new episode becomes the most recently watched episode of the show,
        so it replaces any other episode of the same show in the
        continue-watching view. Records of other episodes stay in the map.

        Returns:
            dict: The stored record, or None if show id, season or episode is missing
        """
        show = show or {}
        try:
            progress_key = encode_progress_key(show.get("id"), TV, season, episode)
        except InvalidKeyError as e:
            logger.warning(f"start_episode: missing required data: {e}")
            return None

        with self._lock:
            existing = self._records.get(progress_key) or {}
            show_stamps = [entry.get("lastWatched") for entry in get_show_progress(self._records, show["id"])]
            record = {
                "id": show["id"],
                "title": resolve_title(show, TV, SHOW_TITLE_FIELDS),
                "type": TV,
                "poster_path": extract_image_path(show.get("poster_path") or show.get("poster")),
                "backdrop_path": extract_image_path(show.get("backdrop_path") or show.get("backdrop")),
                "lastWatched": self._stamp(after=show_stamps),
                "season": season,
                "episode": episode,
                "episodeTitle": (episode_meta or {}).get("name") or f"Episode {episode}",
                "progress": existing.get("progress") or 0,
            }
            self._records[progress_key] = record
            result = copy.deepcopy(record)

        logger.info(f"Started tracking '{record['title']}' S{season}E{episode} ({progress_key})")
        self._notify("start_episode", [progress_key])
        return result

    def update_progress(self, content_id, content_type, season=None, episode=None, progress=0):
        """
        Record playback progress for a title that is already being tracked.

        Stored progress never decreases: the new value is the maximum of the
        stored and the incoming percentage.

        Returns:
            dict: The updated record, or None if nothing was tracked under that key
        """
        try:
            progress_key = encode_progress_key(content_id, content_type, season, episode)
        except InvalidKeyError as e:
            logger.warning(f"update_progress: {e}")
            return None

        try:
            incoming = _clamp_progress(progress)
        except (TypeError, ValueError) as e:
            logger.warning(f"update_progress: invalid progress value for {progress_key}: {e}")
            return None

        with self._lock:
            existing = self._records.get(progress_key)
            if not existing:
                logger.warning(f"No existing progress entry found for: {progress_key}")
                return None
            record = dict(existing)
            stored = existing.get("progress")
            if isinstance(stored, bool) or not isinstance(stored, (int, float)):
                stored = 0
            record["progress"] = max(stored, incoming)
            record["lastWatched"] = self._stamp(after=[existing.get("lastWatched")])
            self._records[progress_key] = record
            result = copy.deepcopy(record)

        logger.debug(f"Progress for {progress_key}: {result['progress']}% (incoming {incoming}%)")
        self._notify("update_progress", [progress_key])
        return result

    def remove(self, content_id, content_type, season=None, episode=None):
        """
        Remove a title from the map.

        A movie removes its single record. A TV show removes every episode
        record of that show; season and episode are accepted for symmetry
        with the other operations and ignored.

        Returns:
            list: The removed records (empty if nothing matched)
        """
        if content_type not in CONTENT_TYPES or content_id is None or content_id == "":
            logger.warning(f"remove: cannot remove id={content_id!r} type={content_type!r}")
            return []

        with self._lock:
            if content_type == MOVIE:
                keys = [encode_progress_key(content_id, MOVIE)]
            else:
                keys = [entry["key"] for entry in get_show_progress(self._records, content_id)]
            removed_keys = [k for k in keys if k in self._records]
            removed = [self._records.pop(k) for k in removed_keys]

        if removed_keys:
            logger.info(f"Removed {len(removed_keys)} progress record(s) for {content_type} {content_id}")
            self._notify("remove", removed_keys)
        return removed

    def restore(self, entry):
        """
        Put a previously removed continue-watching entry back into the map.

        Returns:
            dict: The restored record, or None if the entry cannot form a key
        """
        entry = entry or {}
        content_type = entry.get("type")
        try:
            progress_key = encode_progress_key(entry.get("id"), content_type, entry.get("season"), entry.get("episode"))
        except InvalidKeyError as e:
            logger.warning(f"restore: cannot restore entry: {e}")
            return None

        try:
            progress = _clamp_progress(entry.get("progress") or 0)
        except (TypeError, ValueError):
            progress = 0

        with self._lock:
            record = {
                "id": entry["id"],
                "title": resolve_title(entry, content_type, TITLE_FIELDS),
                "type": content_type,
                "poster_path": entry.get("poster_path"),
                "backdrop_path": entry.get("backdrop_path"),
                "lastWatched": entry.get("lastWatched") or self._stamp(),
                "progress": progress,
            }
            if content_type == TV:
                record["season"] = entry.get("season")
                record["episode"] = entry.get("episode")
                record["episodeTitle"] = entry.get("episodeTitle")
            self._records[progress_key] = record
            result = copy.deepcopy(record)

        logger.info(f"Restored '{record['title']}' ({progress_key})")
        self._notify("restore", [progress_key])
        return result

    def _clear_where(self, operation, predicate):
        with self._lock:
            keys = [k for k, r in self._records.items() if predicate(r)]
            removed = [self._records.pop(k) for k in keys]
        self._notify(operation, keys)
        return removed

    def clear_all(self):
        """Remove every record. Returns the removed records."""
        removed = self._clear_where("clear_all", lambda record: True)
        logger.info(f"Cleared all viewing progress ({len(removed)} records)")
        return removed

    def clear_movies(self):
        return self._clear_where("clear_movies", lambda record: record.get("type") == MOVIE)

    def clear_tv_shows(self):
        return self._clear_where("clear_tv_shows", lambda record: record.get("type") == TV)

    # --- Inbound snapshots ---

    def replace_all(self, snapshot):
        """
        Overwrite the whole map with a snapshot from the backend.

        No field-level merge happens and the mutation callback is not called:
        the snapshot already is the remote state.

        Returns:
            bool: True if the snapshot was applied
        """
        if not isinstance(snapshot, dict):
            logger.warning(f"Ignoring viewing progress snapshot of type {type(snapshot).__name__}")
            return False
        with self._lock:
            self._records = copy.deepcopy(snapshot)
        logger.debug(f"Progress map replaced with snapshot of {len(snapshot)} records")
        return True
