# tests/test_cli.py
import json

import pytest

from watchsync import __version__
from watchsync.cli import main, create_parser

# --- Fixtures ---

@pytest.fixture(autouse=True)
def cli_env(tmp_path, monkeypatch, mocker):
    """Runs every command against a temporary data directory, offline and without a token."""
    monkeypatch.setenv("WATCHSYNC_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("WATCHSYNC_ACCESS_TOKEN", "")
    mocker.patch("watchsync.cli.configure_logging")
    mocker.patch("requests.get", side_effect=AssertionError("no network in tests"))
    mocker.patch("requests.post", side_effect=AssertionError("no network in tests"))
    return tmp_path


def stored_progress(data_dir):
    slot = json.loads((data_dir / "local_storage.json").read_text(encoding="utf-8"))
    return json.loads(slot["viewingProgress"])

# --- Tests ---

def test_version(capsys):
    """--version prints the package version."""
    assert main(["--version"]) == 0
    assert f"watchsync v{__version__}" in capsys.readouterr().out

def test_no_command_prints_help(capsys):
    """Running without a command prints usage."""
    assert main([]) == 0
    assert "usage: watchsync" in capsys.readouterr().out

def test_parser_title_selector():
    """Title selector arguments parse into typed values."""
    args = create_parser().parse_args(["progress", "1399", "tv", "--season", "1", "--episode", "2", "55.5"])
    assert (args.id, args.type, args.season, args.episode, args.percent) == ("1399", "tv", 1, 2, 55.5)

def test_track_and_list_movie(cli_env, capsys):
    """A started movie shows up in the list output."""
    assert main(["start-movie", "550", "--title", "Fight Club"]) == 0
    assert main(["progress", "550", "movie", "42"]) == 0

    record = stored_progress(cli_env)["movie_550"]
    assert record["id"] == 550
    assert record["progress"] == 42

    capsys.readouterr()
    assert main(["list"]) == 0
    assert "Fight Club" in capsys.readouterr().out

def test_track_episode_and_remove(cli_env):
    """Remove drops a tracked episode from storage."""
    assert main(["start-episode", "1399", "1", "2", "--title", "Game of Thrones", "--episode-title", "The Kingsroad"]) == 0
    assert stored_progress(cli_env)["tv_1399_1_2"]["episodeTitle"] == "The Kingsroad"

    assert main(["remove", "1399", "tv"]) == 0
    assert stored_progress(cli_env) == {}

def test_progress_for_untracked_title_fails():
    """Progress for an untracked title exits with an error."""
    assert main(["progress", "1", "movie", "10"]) == 1

def test_clear_movies_only(cli_env):
    """clear --movies keeps TV records."""
    main(["start-movie", "1"])
    main(["start-episode", "9", "1", "1"])
    assert main(["clear", "--movies"]) == 0
    assert list(stored_progress(cli_env)) == ["tv_9_1_1"]

def test_pull_and_push_need_a_token(capsys):
    """pull and push fail without a token."""
    assert main(["pull"]) == 1
    assert "No authentication token found" in capsys.readouterr().err
    assert main(["push"]) == 1

def test_config_command(cli_env, capsys):
    """config sets, rejects and lists settings."""
    assert main(["config", "poll_interval_seconds", "45"]) == 0
    assert json.loads((cli_env / "settings.json").read_text(encoding="utf-8"))["poll_interval_seconds"] == 45.0
    assert main(["config", "poll_interval_seconds", "never"]) == 1

    capsys.readouterr()
    assert main(["config"]) == 0
    assert "poll_interval_seconds" in capsys.readouterr().out

def test_config_unknown_key_is_reported(capsys):
    """Setting an unknown key prints the configuration error and fails."""
    assert main(["config", "colour", "blue"]) == 1
    assert "Unknown setting: colour" in capsys.readouterr().err
