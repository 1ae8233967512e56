"""
Progress key helpers for watchsync.

Every component derives keys through encode_progress_key so a movie or an
episode always maps to exactly one entry in the progress map.
"""

import logging

from watchsync.exceptions import InvalidKeyError

logger = logging.getLogger(__name__)

MOVIE = "movie"
TV = "tv"
CONTENT_TYPES = (MOVIE, TV)


def encode_progress_key(content_id, content_type, season=None, episode=None):
    """
    Build the canonical progress key for a watchable unit.

    Args:
        content_id: Movie id or TV show id
        content_type: 'movie' or 'tv'
        season: Season number (TV only)
        episode: Episode number (TV only)

    Returns:
        str: 'movie_{id}' or 'tv_{id}_{season}_{episode}'

    Raises:
        InvalidKeyError: If the id is missing, the type is unknown, or a TV key
            lacks its season or episode number.
    """
    if content_id is None or content_id == "":
        raise InvalidKeyError(f"Missing content id (type={content_type!r}, season={season!r}, episode={episode!r})")

    if content_type == MOVIE:
        return f"movie_{content_id}"

    if content_type == TV:
        if not season or not episode:
            if not season and not episode:
                problem = "both season and episode are missing"
            elif not season:
                problem = "season number is missing"
            else:
                problem = "episode number is missing"
            raise InvalidKeyError(f"TV progress key for id {content_id} is invalid: {problem}")
        return f"tv_{content_id}_{season}_{episode}"

    raise InvalidKeyError(f"Unknown content type {content_type!r} for id {content_id}")


def _as_int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return value


def parse_progress_key(progress_key):
    """Split a progress key back into its parts, or return None if it is malformed."""
    if not progress_key or not isinstance(progress_key, str):
        return None

    if progress_key.startswith("movie_"):
        content_id = progress_key[len("movie_"):]
        if not content_id:
            return None
        return {"type": MOVIE, "id": _as_int(content_id), "season": None, "episode": None}

    if progress_key.startswith("tv_"):
        parts = progress_key.split("_")
        if len(parts) == 4 and all(parts[1:]):
            return {
                "type": TV,
                "id": _as_int(parts[1]),
                "season": _as_int(parts[2]),
                "episode": _as_int(parts[3]),
            }

    return None


def get_progress_for_content(viewing_progress, content_id, content_type, season=None, episode=None):
    """Look up the record for a title, returning None for unknown or invalid keys."""
    if not viewing_progress:
        return None
    try:
        progress_key = encode_progress_key(content_id, content_type, season, episode)
    except InvalidKeyError as e:
        logger.debug(f"get_progress_for_content: {e}")
        return None
    return viewing_progress.get(progress_key)


def get_show_progress(viewing_progress, show_id):
    """Return every episode record of a show, each merged with its parsed key."""
    if not viewing_progress or show_id is None or show_id == "":
        return []

    prefix = f"tv_{show_id}_"
    entries = []
    for key, record in viewing_progress.items():
        if not key.startswith(prefix):
            continue
        entry = {"key": key}
        entry.update(record)
        entry.update(parse_progress_key(key) or {})
        entries.append(entry)
    return entries
