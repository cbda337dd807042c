from __future__ import annotations

import hmac

from config.settings import ADMIN_AUTH_TOKEN
from fastapi import HTTPException, Request
from logger import logger

TOKEN_HEADER = "X-Nudge-Token"

if not ADMIN_AUTH_TOKEN:
    logger.warning("ADMIN_AUTH_TOKEN 为空, 提醒管理接口全部返回 503")


def extract_token(request: Request) -> tuple[str, str] | None:
    """返回 (来源, token), 优先使用 Authorization: Bearer"""
    scheme, _, credentials = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return "bearer", credentials.strip()
    header_value = request.headers.get(TOKEN_HEADER, "").strip()
    if header_value:
        return "header", header_value
    return None


async def require_admin_auth(request: Request) -> dict[str, str]:
    if not ADMIN_AUTH_TOKEN:
        raise HTTPException(status_code=503, detail="ADMIN_AUTH_TOKEN 未配置")

    found = extract_token(request)
    if found is not None:
        source, token = found
        if hmac.compare_digest(token.encode(), ADMIN_AUTH_TOKEN.encode()):
            return {"auth": source, "user": "admin-token"}

    logger.debug(f"管理接口鉴权失败: path={request.url.path}")
    raise HTTPException(status_code=401, detail="未授权")
