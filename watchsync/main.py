"""
Main application module for watchsync.

Sets up logging, builds a ViewingProgressEngine from the saved settings and
runs it as a foreground service with graceful shutdown.
"""
import sys
import signal
import logging
import threading

from watchsync.config_manager import ENV_FILE_NAME, get_app_data_dir, get_setting
from watchsync.engine import ViewingProgressEngine
from watchsync.persistence import FileSlot
from watchsync.scheduler import TaskScheduler
from watchsync.session import SessionManager
from watchsync.undo import UndoBuffer

logger = logging.getLogger(__name__)

LOG_FILE_NAME = "watchsync.log"


def configure_logging(app_data_dir=None, console_level=logging.WARNING):
    """
    Log INFO and above to watchsync.log in the app data directory and
    warnings to the console.

    Returns:
        pathlib.Path: The log file path, or None if file logging could not be set up
    """
    app_data_dir = app_data_dir or get_app_data_dir()

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(console_level)
    stream_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))

    log_file_path = app_data_dir / LOG_FILE_NAME
    try:
        app_data_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file_path, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter('%(asctime)s [%(levelname)-8s] %(name)s: %(message)s'))
    except OSError as e:
        print(f"CRITICAL: Failed to configure file logging: {e}", file=sys.stderr)
        file_handler = None
        log_file_path = None

    logging.basicConfig(
        level=logging.INFO,
        handlers=[h for h in [stream_handler, file_handler] if h],
        force=True,
    )
    logger.info("=" * 20 + " Application Start " + "=" * 20)
    logger.info(f"Using Application Data Directory: {app_data_dir}")
    if log_file_path:
        logger.info(f"Logging to file: {log_file_path}")
    else:
        logger.warning("File logging is disabled due to setup error.")
    return log_file_path


def build_engine(app_data_dir=None, realtime=None, visibility=None):
    """Create an engine backed by the file slot and token file in the app data directory"""
    app_data_dir = app_data_dir or get_app_data_dir()
    slot = FileSlot(app_data_dir)
    session = SessionManager(env_file=app_data_dir / ENV_FILE_NAME)
    scheduler = TaskScheduler()
    return ViewingProgressEngine(
        slot=slot,
        session=session,
        scheduler=scheduler,
        undo=UndoBuffer(scheduler),
        api_url=get_setting("api_url"),
        realtime=realtime,
        visibility=visibility,
        save_delay=get_setting("save_debounce_seconds"),
        immediate_push_delay=get_setting("immediate_push_delay_seconds"),
        poll_interval=get_setting("poll_interval_seconds"),
        max_poll_interval=get_setting("poll_max_interval_seconds"),
        request_timeout=get_setting("request_timeout_seconds"),
    )


class WatchSyncService:
    """
    Keeps an engine running in the foreground until interrupted.
    """
    def __init__(self, engine):
        self.engine = engine
        self.running = False
        self._stop_event = threading.Event()

    def start(self):
        """
        Initializes the engine and installs signal handlers.

        Returns:
            bool: True if the engine is running
        """
        if self.running:
            logger.warning("Attempted to start the service, but it is already running.")
            return False

        if not self.engine.init():
            logger.error("Failed to initialize the viewing progress engine.")
            return False

        if threading.current_thread() is threading.main_thread():
            logger.debug("Setting up signal handlers (SIGINT, SIGTERM).")
            signal.signal(signal.SIGINT, self._signal_handler)
            signal.signal(signal.SIGTERM, self._signal_handler)
        else:
            logger.warning("Not running in main thread, skipping signal handler setup.")

        self.running = True
        logger.info("watchsync service started.")
        return True

    def stop(self):
        """Flushes pending changes and disposes the engine."""
        if not self.running:
            logger.info("Stop command received, but the service was not running.")
            return
        logger.info("Initiating service shutdown...")
        self.running = False
        self._stop_event.set()
        self.engine.flush()
        self.engine.dispose()
        logger.info("watchsync service stopped.")

    def _signal_handler(self, sig, frame):
        logger.info(f"Received signal {sig}, shutting down gracefully...")
        self._stop_event.set()

    def run_forever(self, check_interval=1.0):
        """Block until stop() or a signal; re-reads the token file so logins from other shells are picked up"""
        while self.running and not self._stop_event.wait(check_interval):
            try:
                self.engine.session.reload()
            except Exception as e:
                logger.error(f"Error while checking the access token: {e}", exc_info=True)
        if self.running:
            self.stop()


def main():
    """Run the engine as a foreground service."""
    configure_logging()
    service = WatchSyncService(build_engine())
    if not service.start():
        print("ERROR: watchsync failed to start. Check the log file.", file=sys.stderr)
        return 1
    print("watchsync is running. Press Ctrl+C to stop.")
    service.run_forever()
    return 0


if __name__ == "__main__":
    sys.exit(main())
