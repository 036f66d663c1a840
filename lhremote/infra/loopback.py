"""Loopback address detection."""

import ipaddress


def is_loopback_address(host: str) -> bool:
    """
    Check whether a host string is a loopback address.

    Recognised forms:
      - localhost (with or without trailing dot)
      - IPv4 127.0.0.0/8
      - IPv6 ::1 (compressed, expanded and bracketed)

    Any other DNS name is treated as remote, including names that merely
    start with "127.".
    """
    h = host.lower()

    if h in ("localhost", "localhost."):
        return True

    bare = h[1:-1] if h.startswith("[") and h.endswith("]") else h
    try:
        return ipaddress.ip_address(bare).is_loopback
    except ValueError:
        return False
