"""HTTP session setup shared by the registry and Harbor clients."""

from typing import Dict, Iterable, Optional, Sequence
from urllib.parse import urlparse

import requests
import urllib3

from ..errors import SchemeMismatch, TransportError


# OpenSSL wording when a TLS handshake is answered with plaintext HTTP
_SCHEME_MISMATCH_MARKERS = (
    'wrong version number',
    'record layer failure',
    'http request',
    'unknown protocol',
    'server gave http response to https client',
)


def parse_no_proxy(value: Optional[str]) -> Sequence[str]:
    """Split a comma separated no-proxy list, dropping blanks."""
    if not value:
        return ()
    return tuple(entry.strip() for entry in value.split(',') if entry.strip())


def should_bypass_proxy(host: str, no_proxy: Iterable[str]) -> bool:
    """True when host equals, or is a subdomain of, a no-proxy entry."""
    for entry in no_proxy:
        if not entry:
            continue
        if host == entry or host.endswith('.' + entry):
            return True
    return False


def proxies_for(url: str, proxy: Optional[str], no_proxy: Iterable[str]) -> Dict[str, str]:
    """Per-request proxy mapping for requests."""
    if not proxy:
        return {}
    host = urlparse(url).hostname or ''
    if should_bypass_proxy(host, no_proxy):
        return {}
    return {'http': proxy, 'https': proxy}


def build_session(insecure: bool = False, proxy: Optional[str] = None) -> requests.Session:
    """Create a session honouring the insecure flag.

    An explicit proxy disables environment proxy settings so the no-proxy
    list is the only routing rule.
    """
    session = requests.Session()
    session.verify = not insecure
    if insecure:
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
    if proxy:
        session.trust_env = False
    return session


def validate_proxy(proxy: Optional[str]) -> Optional[str]:
    """Reject proxy URLs without scheme or host."""
    if not proxy:
        return None
    parsed = urlparse(proxy)
    if not parsed.scheme or not parsed.hostname:
        raise ValueError(f"invalid proxy address: {proxy}")
    return proxy


def is_scheme_mismatch(error: Exception) -> bool:
    """True when an HTTPS request hit a plaintext-only server."""
    if not isinstance(error, requests.exceptions.SSLError):
        return False
    message = str(error).lower()
    return any(marker in message for marker in _SCHEME_MISMATCH_MARKERS)


def translate_request_error(error: requests.exceptions.RequestException) -> TransportError:
    """Map a requests exception onto the transport error taxonomy."""
    if is_scheme_mismatch(error):
        return SchemeMismatch(str(error))
    return TransportError(str(error))
