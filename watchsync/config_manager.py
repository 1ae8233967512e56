import json
import os
import logging
from pathlib import Path

from dotenv import dotenv_values

from watchsync.exceptions import ConfigurationError

log = logging.getLogger(__name__)

APP_NAME = "watchsync"

ENV_DATA_DIR = "WATCHSYNC_DATA_DIR"
ENV_API_URL = "WATCHSYNC_API_URL"
ENV_FILE_NAME = ".watchsync.env"
SETTINGS_FILE_NAME = "settings.json"

# Numeric settings: default, minimum, maximum
NUMERIC_SETTINGS = {
    "save_debounce_seconds": (2.0, 0.0, 60.0),
    "immediate_push_delay_seconds": (0.5, 0.0, 60.0),
    "poll_interval_seconds": (30.0, 1.0, 3600.0),
    "poll_max_interval_seconds": (120.0, 1.0, 3600.0),
    "request_timeout_seconds": (10.0, 1.0, 300.0),
}
DEFAULT_SETTINGS = {"api_url": "http://localhost:5000/api"}
DEFAULT_SETTINGS.update({key: spec[0] for key, spec in NUMERIC_SETTINGS.items()})


def get_app_data_dir():
    """App data directory: $WATCHSYNC_DATA_DIR if set, otherwise ~/.watchsync"""
    override = os.environ.get(ENV_DATA_DIR)
    if override:
        return Path(override).expanduser()
    return Path.home() / f".{APP_NAME}"


def get_settings_file():
    return get_app_data_dir() / SETTINGS_FILE_NAME


def get_env_file_path():
    """Path of the dotenv file holding the access token"""
    return get_app_data_dir() / ENV_FILE_NAME


def _validate_numeric(key, value):
    default, minimum, maximum = NUMERIC_SETTINGS[key]
    try:
        number = float(value)
    except (ValueError, TypeError):
        log.warning(f"Non-numeric {key} '{value}'. Resetting to {default}.")
        return default, True
    if not (minimum <= number <= maximum):
        log.warning(f"Invalid {key} '{number}', must be between {minimum} and {maximum}. Resetting to {default}.")
        return default, True
    return number, False


def load_settings():
    """Loads settings from the JSON file in the app data directory, filling in and repairing defaults."""
    settings_file = get_settings_file()
    if not settings_file.exists():
        log.info(f"Settings file not found at {settings_file}. Using defaults.")
        default_settings = dict(DEFAULT_SETTINGS)
        save_settings(default_settings)
        return default_settings
    try:
        with open(settings_file, 'r', encoding='utf-8') as f:
            settings = json.load(f)
        if not isinstance(settings, dict):
            log.error(f"Settings file {settings_file} does not hold a JSON object. Using defaults.")
            return dict(DEFAULT_SETTINGS)

        updated = False
        for key, default in DEFAULT_SETTINGS.items():
            if key not in settings:
                settings[key] = default
                updated = True
        for key in NUMERIC_SETTINGS:
            settings[key], reset = _validate_numeric(key, settings[key])
            updated = updated or reset
        if not isinstance(settings.get("api_url"), str) or not settings["api_url"].strip():
            log.warning(f"Invalid api_url in {settings_file}. Resetting to {DEFAULT_SETTINGS['api_url']}.")
            settings["api_url"] = DEFAULT_SETTINGS["api_url"]
            updated = True

        # Save the file only if a default was added or an invalid value was corrected
        if updated:
            save_settings(settings)
        return settings
    except (json.JSONDecodeError, IOError) as e:
        log.error(f"Error loading settings from {settings_file}: {e}. Using defaults.")
        return dict(DEFAULT_SETTINGS)


def save_settings(settings_dict):
    """Saves the provided settings dictionary to the JSON file in the app data directory."""
    settings_file = get_settings_file()
    try:
        settings_file.parent.mkdir(parents=True, exist_ok=True)
        with open(settings_file, 'w', encoding='utf-8') as f:
            json.dump(settings_dict, f, indent=4)
        log.info(f"Settings saved successfully to {settings_file}")
    except OSError as e:
        log.error(f"Could not create or write to settings file {settings_file}: {e}")


def get_setting(key, default=None):
    """Gets a specific setting value. WATCHSYNC_API_URL (from the environment or the env file) wins for api_url."""
    if key == "api_url":
        env_file = get_env_file_path()
        env_url = os.environ.get(ENV_API_URL)
        if not env_url and env_file.exists():
            env_url = dotenv_values(env_file).get(ENV_API_URL)
        if env_url:
            return env_url
    settings = load_settings()
    return settings.get(key, default)


def validate_setting(key, value):
    """
    Check a new setting value.

    Returns:
        The value as it would be stored (numeric settings become floats)

    Raises:
        ConfigurationError: If the key is unknown or the value is invalid
    """
    if key not in DEFAULT_SETTINGS:
        raise ConfigurationError(f"Unknown setting: {key}")
    if key in NUMERIC_SETTINGS:
        number, rejected = _validate_numeric(key, value)
        if rejected:
            raise ConfigurationError(f"Invalid value for {key}: {value}")
        return number
    if key == "api_url" and (not isinstance(value, str) or not value.strip()):
        raise ConfigurationError(f"Invalid value for api_url: {value!r}")
    return value


def set_setting(key, value):
    """Sets a specific setting value and saves it. Invalid values are rejected."""
    try:
        value = validate_setting(key, value)
    except ConfigurationError as e:
        log.error(f"Attempted to set setting: {e}")
        return False

    settings = load_settings()
    settings[key] = value
    save_settings(settings)
    return True
