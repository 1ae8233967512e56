"""
HTTP calls to the viewing-progress backend.

Failures are classified into exactly two kinds: CredentialInvalidError for a
401 response, and NetworkError (retryable) for everything else.
"""

import logging

import requests

from watchsync.exceptions import CredentialInvalidError, NetworkError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:5000/api"
DEFAULT_TIMEOUT = 10
TOKEN_CHECK_TIMEOUT = 5


def _headers(access_token):
    return {
        'Content-Type': 'application/json',
        'Authorization': f'Bearer {access_token}'
    }


def _check_response(response, action):
    if response.status_code == 401:
        logger.warning(f"Backend rejected credentials while trying to {action}")
        raise CredentialInvalidError(f"Unauthorized while trying to {action}", status_code=401)
    if response.status_code not in (200, 201):
        logger.error(f"Backend error while trying to {action}: {response.status_code}")
        try: logger.debug(f"Error details: {response.json()}")
        except ValueError: logger.debug(f"Error response text: {response.text}")
        raise NetworkError(f"HTTP {response.status_code} while trying to {action}", status_code=response.status_code)


def _response_json(response, action):
    try:
        return response.json()
    except ValueError as e:
        raise NetworkError(f"Non-JSON response while trying to {action}: {e}", status_code=response.status_code) from e


def get_viewing_progress(api_url, access_token, timeout=DEFAULT_TIMEOUT):
    """
    Fetch the stored viewing progress snapshot.

    Returns:
        dict: The progress map from {'success': true, 'data': {'viewingProgress': {...}}}

    Raises:
        CredentialInvalidError: On a missing token or a 401 response
        NetworkError: On any other failure, including an unexpected body
    """
    if not access_token:
        raise CredentialInvalidError("Missing access token for get_viewing_progress")

    action = "fetch viewing progress"
    try:
        response = requests.get(f"{api_url}/user/viewing-progress", headers=_headers(access_token), timeout=timeout)
    except requests.exceptions.RequestException as e:
        raise NetworkError(f"Error fetching viewing progress: {e}") from e

    _check_response(response, action)
    body = _response_json(response, action)

    data = body.get("data") if isinstance(body, dict) else None
    viewing_progress = data.get("viewingProgress") if isinstance(data, dict) else None
    if not isinstance(viewing_progress, dict) or not body.get("success"):
        raise NetworkError(f"Invalid response format while trying to {action}", status_code=response.status_code)

    logger.info(f"Fetched {len(viewing_progress)} viewing progress records from backend")
    return viewing_progress


def sync_viewing_progress(api_url, access_token, viewing_progress, timeout=DEFAULT_TIMEOUT):
    """
    Send the full local snapshot to the backend.

    Returns:
        dict: The response body ({'success': true, ...})
    """
    if not access_token:
        raise CredentialInvalidError("Missing access token for sync_viewing_progress")

    action = "sync viewing progress"
    try:
        response = requests.post(
            f"{api_url}/user/viewing-progress/sync",
            headers=_headers(access_token),
            json={"viewingProgress": viewing_progress},
            timeout=timeout,
        )
    except requests.exceptions.RequestException as e:
        raise NetworkError(f"Error syncing viewing progress: {e}") from e

    _check_response(response, action)
    body = _response_json(response, action)
    if not isinstance(body, dict) or not body.get("success"):
        raise NetworkError(f"Backend reported failure while trying to {action}", status_code=response.status_code)

    logger.info(f"Synced {len(viewing_progress)} viewing progress records to backend")
    return body


def validate_token(api_url, access_token, timeout=TOKEN_CHECK_TIMEOUT):
    """
    Check the token against the profile endpoint before loading anything.

    Returns:
        bool: True if the backend accepted the token

    Raises:
        CredentialInvalidError: On a missing token or a 401 response
        NetworkError: On timeouts and any other failure
    """
    if not access_token:
        raise CredentialInvalidError("Missing access token")
    try:
        response = requests.get(f"{api_url}/user/profile", headers=_headers(access_token), timeout=timeout)
    except requests.exceptions.Timeout as e:
        raise NetworkError(f"Token validation timed out: {e}") from e
    except requests.exceptions.RequestException as e:
        raise NetworkError(f"Token validation error: {e}") from e

    _check_response(response, "validate token")
    return True
