from __future__ import annotations

from typing import Dict, Optional

from manifest.types import ChainConfig


class UnsupportedHostError(ValueError):
    pass


def _hosts(chain: Optional[ChainConfig]) -> Dict[str, str]:
    """
    Configured host roots keyed by selector ('rpc' | 'admin').
    Trailing slashes are kept; paths are appended verbatim.
    """
    if chain is None:
        return {}

    hosts: Dict[str, str] = {}
    if chain.rpc.base:
        hosts["rpc"] = chain.rpc.base
    if chain.rpc.admin:
        hosts["admin"] = chain.rpc.admin
    return hosts


def get_host_url(chain: Optional[ChainConfig], base: str) -> str:
    """
    Return the host root for a selector.
    Raises UnsupportedHostError if not configured.
    """
    url = _hosts(chain).get("admin" if base == "admin" else "rpc")
    if not url:
        raise UnsupportedHostError(f"Unsupported host: {base}")
    return url


def host_or_empty(chain: Optional[ChainConfig], base: str) -> str:
    try:
        return get_host_url(chain, base)
    except UnsupportedHostError:
        return ""
