"""
HTTP utilities for bi-agents.

Builds httpx clients for the provider integrations, honouring proxy
environment variables, a custom CA bundle and the HTTP/2 setting.
Retrying is not done here: the invocation layer owns the retry policy.
"""

import os
from dataclasses import dataclass
from typing import Dict, Optional, Union

import httpx


@dataclass
class ProxyConfig:
    """Configuration for proxy and SSL settings."""

    verify: Union[bool, str]
    trust_env: bool
    proxy_url: Optional[str]


def get_cert_bundle_path() -> Optional[str]:
    for name in ("SSL_CERT_FILE", "REQUESTS_CA_BUNDLE"):
        path = os.environ.get(name)
        if path and os.path.exists(path):
            return path
    return None


def _resolve_proxy_config(verify: Union[bool, str, None] = None) -> ProxyConfig:
    """Resolve proxy and SSL settings from the environment."""
    if verify is None:
        verify = get_cert_bundle_path() or True

    proxy_url = (
        os.environ.get("HTTPS_PROXY")
        or os.environ.get("https_proxy")
        or os.environ.get("HTTP_PROXY")
        or os.environ.get("http_proxy")
    )

    return ProxyConfig(
        verify=verify,
        # Only let httpx read the environment (NO_PROXY etc.) when a proxy is set
        trust_env=bool(proxy_url),
        proxy_url=proxy_url or None,
    )


def create_async_client(
    timeout: float = 15.0,
    verify: Union[bool, str, None] = None,
    headers: Optional[Dict[str, str]] = None,
    http2: bool = False,
    base_url: str = "",
) -> httpx.AsyncClient:
    config = _resolve_proxy_config(verify)
    return httpx.AsyncClient(
        base_url=base_url,
        proxy=config.proxy_url,
        verify=config.verify,
        headers=headers or {},
        timeout=timeout,
        http2=http2,
        trust_env=config.trust_env,
    )


def create_auth_headers(
    api_key: str, header_name: str = "Authorization"
) -> Dict[str, str]:
    return {header_name: f"Bearer {api_key}"}


def extract_error_detail(response: httpx.Response) -> str:
    """Pull the provider's error message out of a failed response, if any."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message", ""))
        if error:
            return str(error)
    return ""
