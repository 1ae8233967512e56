"""
Command-Line Interface (CLI) for watchsync.

Provides commands for managing the access token, recording viewing
progress, inspecting the continue-watching list and syncing with the backend.
"""
import argparse
import sys
import logging

import colorama
from colorama import Fore, Style

from watchsync import __version__
from watchsync.config_manager import get_app_data_dir, get_setting, load_settings, set_setting, validate_setting
from watchsync.events import VisibilitySignal
from watchsync.exceptions import ConfigurationError
from watchsync.main import LOG_FILE_NAME, WatchSyncService, build_engine, configure_logging

colorama.init()
logger = logging.getLogger(__name__)


def _parse_id(value):
    """Numeric ids stay numbers so keys match what the backend sends"""
    return int(value) if value.isdigit() else value


def _open_engine():
    """Engine for a one-shot command: initialized, but hidden so it never polls"""
    engine = build_engine(visibility=VisibilitySignal(visible=False))
    engine.init()
    return engine


def _close_engine(engine):
    engine.flush()
    engine.dispose()


def _describe(entry):
    if entry.get("type") == "tv":
        return f"{entry['title']} S{entry.get('season')}E{entry.get('episode')} - {entry.get('episodeTitle') or ''}".rstrip(" -")
    return entry["title"]


def login_command(args):
    """Stores an access token obtained from the web application."""
    engine = _open_engine()
    try:
        engine.session.set_token(args.token)
        result = engine.refresh_from_backend()
    finally:
        _close_engine(engine)
    print(f"{Fore.GREEN}[✓] Access token saved.{Style.RESET_ALL}")
    if result.get("success"):
        print(f"{Fore.GREEN}[✓] Loaded {len(result['data'])} records from the backend.{Style.RESET_ALL}")
    else:
        print(f"{Fore.YELLOW}[!] Could not load progress from the backend: {result.get('error')}{Style.RESET_ALL}")
    return 0


def logout_command(args):
    """Removes the access token and the local progress of that account."""
    engine = _open_engine()
    try:
        if not engine.session.has_token:
            print(f"{Fore.YELLOW}[!] Not logged in.{Style.RESET_ALL}")
            return 0
        engine.session.clear_token(reason="logout")
    finally:
        engine.dispose()
    print(f"{Fore.GREEN}[✓] Logged out and cleared local viewing progress.{Style.RESET_ALL}")
    return 0


def status_command(args):
    engine = _open_engine()
    try:
        records = engine.get_viewing_progress()
        listed = engine.get_continue_watching()
        logged_in = engine.session.has_token
    finally:
        engine.dispose()
    print(f"{Fore.CYAN}=== watchsync status ==={Style.RESET_ALL}")
    print(f"Data directory:     {get_app_data_dir()}")
    print(f"Backend:            {get_setting('api_url')}")
    token_state = f"{Fore.GREEN}present{Style.RESET_ALL}" if logged_in else f"{Fore.YELLOW}missing (local only){Style.RESET_ALL}"
    print(f"Access token:       {token_state}")
    print(f"Progress records:   {len(records)}")
    print(f"Continue watching:  {len(listed)}")
    return 0


def list_command(args):
    engine = _open_engine()
    try:
        if args.all:
            entries = sorted(engine.get_viewing_progress().items())
        else:
            entries = [(None, entry) for entry in engine.get_continue_watching()]
    finally:
        engine.dispose()

    if not entries:
        print("Nothing to continue watching.")
        return 0
    for key, entry in entries:
        prefix = f"{key:<24} " if key else ""
        print(f"{prefix}{entry.get('progress', 0):>5}%  {_describe(entry)}  {Style.DIM}{entry.get('lastWatched')}{Style.RESET_ALL}")
    return 0


def start_movie_command(args):
    engine = _open_engine()
    try:
        record = engine.start_movie({"id": _parse_id(args.id), "title": args.title, "poster_path": args.poster})
    finally:
        _close_engine(engine)
    if record is None:
        print(f"{Fore.RED}ERROR: Could not start tracking movie '{args.id}'.{Style.RESET_ALL}", file=sys.stderr)
        return 1
    print(f"{Fore.GREEN}[✓] Tracking {_describe(record)}{Style.RESET_ALL}")
    return 0


def start_episode_command(args):
    engine = _open_engine()
    try:
        record = engine.start_episode(
            {"id": _parse_id(args.show_id), "name": args.title, "poster_path": args.poster},
            args.season,
            args.episode,
            {"name": args.episode_title} if args.episode_title else None,
        )
    finally:
        _close_engine(engine)
    if record is None:
        print(f"{Fore.RED}ERROR: Could not start tracking show '{args.show_id}' S{args.season}E{args.episode}.{Style.RESET_ALL}", file=sys.stderr)
        return 1
    print(f"{Fore.GREEN}[✓] Tracking {_describe(record)}{Style.RESET_ALL}")
    return 0


def progress_command(args):
    engine = _open_engine()
    try:
        record = engine.update_progress(_parse_id(args.id), args.type, args.season, args.episode, args.percent)
    finally:
        _close_engine(engine)
    if record is None:
        print(f"{Fore.RED}ERROR: No tracked title matches. Start tracking it first.{Style.RESET_ALL}", file=sys.stderr)
        return 1
    print(f"{Fore.GREEN}[✓] {_describe(record)}: {record['progress']}%{Style.RESET_ALL}")
    return 0


def remove_command(args):
    engine = _open_engine()
    try:
        removed = engine.remove_from_continue_watching(_parse_id(args.id), args.type, args.season, args.episode)
    finally:
        _close_engine(engine)
    if not removed:
        print(f"{Fore.YELLOW}[!] Nothing to remove.{Style.RESET_ALL}")
        return 0
    print(f"{Fore.GREEN}[✓] Removed.{Style.RESET_ALL}")
    return 0


def clear_command(args):
    engine = _open_engine()
    try:
        if args.movies:
            engine.clear_movies_from_continue_watching()
            what = "movies"
        elif args.tv:
            engine.clear_tv_shows_from_continue_watching()
            what = "TV shows"
        else:
            engine.clear_all_continue_watching()
            what = "all viewing progress"
    finally:
        _close_engine(engine)
    print(f"{Fore.GREEN}[✓] Cleared {what}.{Style.RESET_ALL}")
    return 0


def pull_command(args):
    engine = _open_engine()
    try:
        result = engine.refresh_from_backend()
    finally:
        engine.dispose()
    if not result.get("success"):
        print(f"{Fore.RED}ERROR: {result.get('error')}{Style.RESET_ALL}", file=sys.stderr)
        return 1
    print(f"{Fore.GREEN}[✓] Loaded {len(result['data'])} records from the backend.{Style.RESET_ALL}")
    return 0


def push_command(args):
    engine = _open_engine()
    try:
        if not engine.session.has_token:
            print(f"{Fore.RED}ERROR: Not logged in. Run 'watchsync login --token <token>' first.{Style.RESET_ALL}", file=sys.stderr)
            return 1
        pushed = engine.sync_client.push()
    finally:
        engine.dispose()
    if not pushed:
        print(f"{Fore.RED}ERROR: Push failed. Check the log file.{Style.RESET_ALL}", file=sys.stderr)
        return 1
    print(f"{Fore.GREEN}[✓] Local viewing progress pushed to the backend.{Style.RESET_ALL}")
    return 0


def run_command(args):
    """Runs the engine in the foreground, polling the backend until Ctrl+C."""
    service = WatchSyncService(build_engine())
    if not service.start():
        print(f"{Fore.RED}ERROR: watchsync failed to start. Check the log file.{Style.RESET_ALL}", file=sys.stderr)
        return 1
    print(f"{Fore.CYAN}watchsync is running. Press Ctrl+C to stop.{Style.RESET_ALL}")
    service.run_forever()
    return 0


def config_command(args):
    """Shows the saved settings, or changes one of them."""
    if args.key is None:
        for key, value in sorted(load_settings().items()):
            print(f"{key:<30} {value}")
        return 0
    if args.value is None:
        print(get_setting(args.key))
        return 0
    try:
        validate_setting(args.key, args.value)
    except ConfigurationError as e:
        print(f"{Fore.RED}ERROR: {e}{Style.RESET_ALL}", file=sys.stderr)
        return 1
    if not set_setting(args.key, args.value):
        print(f"{Fore.RED}ERROR: Could not save {args.key}. Check the log file.{Style.RESET_ALL}", file=sys.stderr)
        return 1
    print(f"{Fore.GREEN}[✓] {args.key} set to {get_setting(args.key)}{Style.RESET_ALL}")
    return 0


def version_command(args):
    print(f"watchsync v{__version__}")
    print(f"Python: {sys.version.split()[0]}")
    print(f"Platform: {sys.platform}")
    return 0


def _add_title_selector(parser):
    parser.add_argument("id", help="Movie or TV show id")
    parser.add_argument("type", choices=["movie", "tv"])
    parser.add_argument("--season", type=int, default=None)
    parser.add_argument("--episode", type=int, default=None)


def create_parser():
    parser = argparse.ArgumentParser(
        prog="watchsync",
        description="Track viewing progress and keep it in sync with the backend.",
    )
    parser.add_argument("--version", "-v", action="store_true", help="Display version information and exit.")
    subparsers = parser.add_subparsers(dest="command", title="commands")

    login_parser = subparsers.add_parser("login", help="Save an access token.")
    login_parser.add_argument("--token", required=True)
    subparsers.add_parser("logout", help="Forget the access token and local progress.")
    subparsers.add_parser("status", help="Show token state and record counts.")

    list_parser = subparsers.add_parser("list", help="Show the continue-watching list.")
    list_parser.add_argument("--all", action="store_true", help="Show every stored record instead.")

    movie_parser = subparsers.add_parser("start-movie", help="Start tracking a movie.")
    movie_parser.add_argument("id")
    movie_parser.add_argument("--title")
    movie_parser.add_argument("--poster")

    episode_parser = subparsers.add_parser("start-episode", help="Start tracking a TV episode.")
    episode_parser.add_argument("show_id")
    episode_parser.add_argument("season", type=int)
    episode_parser.add_argument("episode", type=int)
    episode_parser.add_argument("--title")
    episode_parser.add_argument("--episode-title")
    episode_parser.add_argument("--poster")

    progress_parser = subparsers.add_parser("progress", help="Record playback progress in percent.")
    _add_title_selector(progress_parser)
    progress_parser.add_argument("percent", type=float)

    remove_parser = subparsers.add_parser("remove", help="Remove a title from the list.")
    _add_title_selector(remove_parser)

    clear_parser = subparsers.add_parser("clear", help="Clear viewing progress.")
    group = clear_parser.add_mutually_exclusive_group()
    group.add_argument("--movies", action="store_true")
    group.add_argument("--tv", action="store_true")

    subparsers.add_parser("pull", help="Replace local progress with the backend copy.")
    subparsers.add_parser("push", help="Send local progress to the backend.")
    subparsers.add_parser("run", help="Run in the foreground and keep syncing.")
    config_parser = subparsers.add_parser("config", help="Show or change settings.")
    config_parser.add_argument("key", nargs="?")
    config_parser.add_argument("value", nargs="?")
    subparsers.add_parser("version", help="Display version information.")
    return parser


def main(argv=None):
    """
    Main entry point for the CLI application.

    Returns:
        int: Exit code (0 for success, 1 for errors).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if getattr(args, 'version', False):
        return version_command(args)

    if not getattr(args, 'command', None):
        parser.print_help()
        return 0

    command_map = {
        "login": login_command,
        "logout": logout_command,
        "status": status_command,
        "list": list_command,
        "start-movie": start_movie_command,
        "start-episode": start_episode_command,
        "progress": progress_command,
        "remove": remove_command,
        "clear": clear_command,
        "pull": pull_command,
        "push": push_command,
        "run": run_command,
        "config": config_command,
        "version": version_command,
    }

    configure_logging()
    try:
        logger.info(f"Executing command: {args.command}")
        exit_code = command_map[args.command](args)
        logger.info(f"Command '{args.command}' finished with exit code {exit_code}.")
        return exit_code
    except Exception as e:
        logger.exception(f"Unhandled exception during command '{args.command}': {e}")
        print(f"\n{Fore.RED}UNEXPECTED ERROR: An error occurred during the '{args.command}' command.{Style.RESET_ALL}", file=sys.stderr)
        print(f"{Fore.RED}Details: {e}{Style.RESET_ALL}", file=sys.stderr)
        print(f"{Fore.YELLOW}Please check the log file for more information: {get_app_data_dir() / LOG_FILE_NAME}{Style.RESET_ALL}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
