#Filename: request_matcher.py
"""
PAC REQUEST MATCHER
Parses just enough of an HTTP/1.1 request head to decide whether it asks
this server for the PAC resource. Never raises on hostile input.

    GET /pac?hash=...&secret=... HTTP/1.1
    Host: 127.0.0.1:8123
"""

import hmac
import re
from typing import Dict, List, Optional
from urllib.parse import parse_qs

from structures import RequestMatch

_LINE_SPLIT = re.compile(r'\r\n|\r|\n')

def split_lines(data: bytes) -> List[str]:
    """Decodes the first packet and splits it on CRLF, CR or LF."""
    text = data.decode('utf-8', errors='replace')
    return _LINE_SPLIT.split(text)

def parse_headers(lines: List[str]) -> Dict[str, str]:
    """
    Splits header lines at the first colon. Lines without one are skipped.
    Names are lower-cased; the first occurrence wins.
    """
    headers: Dict[str, str] = {}
    for line in lines:
        if not line or ':' not in line:
            continue
        name, value = line.split(':', 1)
        headers.setdefault(name.strip().lower(), value.strip())
    return headers

def secret_in_query(query: str, secret: str) -> bool:
    """Exact match of the 'secret' query parameter against the cached token."""
    if not query or not secret:
        return False
    values = parse_qs(query, keep_blank_values=True).get('secret', [])
    expected = secret.encode('ascii')
    return any(
        hmac.compare_digest(v.encode('utf-8', errors='replace'), expected)
        for v in values
    )

def match_request(
    data: bytes,
    resource_name: str,
    local_endpoint: str,
    secret: Optional[str] = None
) -> RequestMatch:
    """
    Matches a raw request against the PAC resource.
    `secret` is None when secret protection is off.
    """
    result = RequestMatch(secret_match=secret is None)

    lines = split_lines(data)
    # Request line plus at least one header line (Host)
    if len(lines) < 2:
        return result

    parts = lines[0].split(' ')
    if len(parts) == 3 and parts[0] == 'GET':
        target = parts[1]
        path, _, query = target.partition('?')
        resource = path[1:]
        if resource.casefold() == resource_name.casefold():
            result.path_match = True
            if secret is not None:
                result.secret_match = secret_in_query(query, secret)

    host = parse_headers(lines[1:]).get('host')
    if host is not None and local_endpoint and host == local_endpoint:
        result.host_match = True

    return result
