"""
Public IP lookup for login notifications.
"""

import logging

import requests

logger = logging.getLogger(__name__)

IPIFY_URL = "https://api.ipify.org?format=json"


def get_user_ip(timeout: int = 5) -> str:
    """Return the public IP address reported by ipify, or 'Unknown'"""
    try:
        response = requests.get(IPIFY_URL, timeout=timeout)
        response.raise_for_status()
        return response.json()["ip"]
    except (requests.exceptions.RequestException, ValueError, KeyError) as e:
        logger.error(f"Failed to get IP address: {e}")
        return "Unknown"
