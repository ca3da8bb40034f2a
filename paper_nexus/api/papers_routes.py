"""Signed catalog proxy.

Every check (signature, path, auth, origin) runs before the upstream request,
so a rejected request never reaches the papers service.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials

from paper_nexus.auth.deps import bearer_scheme, extract_access_token, get_cfg
from paper_nexus.auth.tokens import InvalidTokenError, verify
from paper_nexus.config import Config
from paper_nexus.errors import AuthError, ForbiddenError, UpstreamError, ValidationError
from paper_nexus.papers.proxy import RESPONSE_HEADERS, fetch_catalog, origin_allowed, validate_path
from paper_nexus.papers.signing import (
    HEADER_SIGNATURE,
    HEADER_TIMESTAMP,
    HEADER_TOKEN,
    encrypt_response,
    validate_signed_request,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _proxy(
    request: Request,
    cfg: Config,
    *,
    catalog: str,
    path: Optional[str],
    credentials: Optional[HTTPAuthorizationCredentials],
    require_login: bool,
) -> JSONResponse:
    # 1. request signature
    token = request.headers.get(HEADER_TOKEN)
    timestamp = request.headers.get(HEADER_TIMESTAMP)
    signature = request.headers.get(HEADER_SIGNATURE)
    if not token or not timestamp or not signature:
        raise ValidationError("Missing request security headers", code="missing_signature_headers")

    if not cfg.API_SIGNATURE_KEY:
        logger.error("API_SIGNATURE_KEY is not set; refusing proxied request")
        raise UpstreamError("Papers API is not configured", code="upstream_not_configured")

    if not validate_signed_request(
        token,
        timestamp,
        signature,
        cfg.API_SIGNATURE_KEY,
        window_ms=cfg.SIGNED_REQUEST_WINDOW_MS,
    ):
        raise ForbiddenError("Invalid request signature", code="invalid_signature")

    # 2. path
    safe_path = validate_path(path)

    # 3. session, for non-public catalogs
    access_token = extract_access_token(request, credentials, cfg)
    if require_login:
        try:
            verify(access_token, secret=cfg.JWT_SECRET)
        except InvalidTokenError as e:
            raise AuthError("INVALID_TOKEN") from e

    # 4. origin / referer
    if not origin_allowed(request.headers.get("host"), request.headers.get("origin"), request.headers.get("referer")):
        raise ForbiddenError("Invalid origin", code="invalid_origin")

    # 5. upstream + encrypt
    data = fetch_catalog(
        cfg,
        catalog,
        safe_path,
        request_id=token,
        access_token=access_token if require_login else None,
    )
    encrypted = encrypt_response(data, cfg.API_SIGNATURE_KEY, salt=cfg.RESPONSE_KEY_SALT)
    return JSONResponse({"success": True, "data": encrypted}, headers=RESPONSE_HEADERS)


@router.get("/papers")
def papers_proxy(
    request: Request,
    path: Optional[str] = Query(default=None),
    cfg: Config = Depends(get_cfg),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> JSONResponse:
    return _proxy(request, cfg, catalog="papers", path=path, credentials=credentials, require_login=True)


@router.get("/marks")
def marks_proxy(
    request: Request,
    path: Optional[str] = Query(default=None),
    cfg: Config = Depends(get_cfg),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> JSONResponse:
    return _proxy(request, cfg, catalog="marks", path=path, credentials=credentials, require_login=False)
