"""Utility modules for the API."""

from .client_ip import get_client_ip, TRUST_PROXY

__all__ = [
    'get_client_ip',
    'TRUST_PROXY',
]
