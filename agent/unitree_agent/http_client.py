"""
HTTP session for the UniTree API: pooling, automatic retry, bearer auth.

REQUESTS_CA_BUNDLE / SSL_CERT_FILE win when set (campus networks often sit
behind an intercepting proxy); otherwise certifi's bundle is used.
"""

import os

import certifi
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .constants import AGENT_VERSION

# Uploads are idempotent server-side (keyed by session id), so POST may retry.
_retry_strategy = Retry(
    total=3,
    backoff_factor=2,                           # 2s, 4s, 8s
    status_forcelist=[429, 502, 503, 504],
    allowed_methods=["GET", "POST"],
    respect_retry_after_header=True,
)


def _get_ca_bundle():
    env_ca = os.environ.get("REQUESTS_CA_BUNDLE") or os.environ.get("SSL_CERT_FILE")
    if env_ca and os.path.isfile(env_ca):
        return env_ca
    return certifi.where()


def create_session(token=None):
    """requests.Session with retry adapter, CA bundle, and auth headers."""
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=1, pool_maxsize=2, max_retries=_retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.verify = _get_ca_bundle()
    session.headers["User-Agent"] = f"UniTreeAgent/{AGENT_VERSION}"
    if token:
        session.headers["Authorization"] = f"Bearer {token}"
    return session


def set_token(token):
    """Swap the bearer token on the shared session (e.g. after re-login)."""
    if token:
        http.headers["Authorization"] = f"Bearer {token}"
    else:
        http.headers.pop("Authorization", None)


def reset_session(session):
    """Close and recreate the session, keeping its auth header."""
    auth = session.headers.get("Authorization", "")
    try:
        session.close()
    except Exception:
        pass
    token = auth[len("Bearer "):] if auth.startswith("Bearer ") else None
    return create_session(token)


# Global shared session
http = create_session()
