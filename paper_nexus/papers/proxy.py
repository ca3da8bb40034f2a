from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import requests

from paper_nexus.config import Config
from paper_nexus.errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)

# Catalog paths look like /subjects/{id}/units/{id}/papers or /search?q=...&page=1
_PATH_RE = re.compile(r"^/[A-Za-z0-9_\-./?=&%+]*$")
PATH_MAX = 512

CATALOGS = ("papers", "marks")

RESPONSE_HEADERS = {
    "Cache-Control": "no-store, must-revalidate",
    "Pragma": "no-cache",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "same-origin",
}


def validate_path(path: Optional[str]) -> str:
    """Only relative catalog paths are forwarded: no scheme, no traversal."""
    p = (path or "").strip()
    if not p:
        raise ValidationError("Path is required", code="path_required")
    if (
        len(p) > PATH_MAX
        or p.startswith("//")
        or ".." in p
        or "://" in p
        or not _PATH_RE.match(p)
    ):
        raise ValidationError("Invalid path", code="invalid_path")
    return p


def _hostname(url: str) -> Optional[str]:
    try:
        return urlparse(url).hostname
    except ValueError:
        return None


def origin_allowed(host: Optional[str], origin: Optional[str], referer: Optional[str]) -> bool:
    """Same-site check on Origin / Referer.

    Absent headers do not count against the request (same-origin GETs often
    carry neither). Every header that is present must name this host.
    """
    if not host:
        return False
    current = host.split(":")[0].lower()

    origin_ok = True
    if origin:
        origin_ok = (_hostname(origin) or "").lower() == current

    referer_ok = True
    if referer:
        referer_ok = (_hostname(referer) or "").lower() == current

    return origin_ok and referer_ok


def upstream_url(cfg: Config, catalog: str, path: str) -> str:
    if not cfg.PAPERS_API_URL:
        raise UpstreamError("Papers API is not configured", code="upstream_not_configured")
    base = cfg.PAPERS_API_URL.rstrip("/")
    if catalog == "marks":
        return f"{base}/marks{path}"
    return f"{base}{path}"


def fetch_catalog(
    cfg: Config,
    catalog: str,
    path: str,
    *,
    request_id: str,
    access_token: Optional[str] = None,
) -> Any:
    """GET catalog JSON from the upstream papers service."""
    if catalog not in CATALOGS:
        raise ValueError(f"unknown catalog: {catalog}")

    url = upstream_url(cfg, catalog, path)
    headers: Dict[str, str] = {"X-Request-ID": request_id, "Accept": "application/json"}
    if access_token:
        headers["Authorization"] = f"Bearer {access_token}"

    logger.debug("upstream GET %s", url)
    try:
        r = requests.get(url, headers=headers, timeout=cfg.PAPERS_API_TIMEOUT_SECONDS)
    except requests.RequestException as e:
        logger.warning("upstream request failed: %s", e)
        raise UpstreamError() from e

    if r.status_code != 200:
        logger.warning("upstream %s returned %s", url, r.status_code)
        raise UpstreamError()
    try:
        return r.json()
    except ValueError as e:
        logger.warning("upstream %s returned non-JSON body", url)
        raise UpstreamError() from e
