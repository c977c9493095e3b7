"""
Aliyun NLS token client

Builds and signs the CreateToken request (Alibaba Cloud RPC signature v1,
HMAC-SHA1) and fetches a short-lived token over aiohttp.
"""

import asyncio
import base64
import hashlib
import hmac
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import quote

import aiohttp

from ..errors import AuthFailed

logger = logging.getLogger(__name__)

TOKEN_ACTION = "CreateToken"
TOKEN_API_VERSION = "2019-02-28"
DEFAULT_REGION = "cn-shanghai"


def percent_encode(value: Any) -> str:
    """RFC 3986 encoding: only A-Z a-z 0-9 - _ . ~ stay unescaped."""
    return quote(str(value), safe="~")


def canonical_query(params: Dict[str, Any]) -> str:
    return "&".join(f"{percent_encode(k)}={percent_encode(params[k])}" for k in sorted(params))


def sign_params(params: Dict[str, Any], secret: str) -> str:
    """
    Compute the request signature for a GET to the root path.

    Args:
        params: All query parameters except Signature
        secret: Access key secret

    Returns:
        Base64 HMAC-SHA1 of ``GET&%2F&<encoded canonical query>``
    """
    string_to_sign = "GET&" + percent_encode("/") + "&" + percent_encode(canonical_query(params))
    digest = hmac.new(f"{secret}&".encode("utf-8"), string_to_sign.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def build_token_params(
    access_key_id: str,
    region: str = DEFAULT_REGION,
    nonce: Optional[str] = None,
    timestamp: Optional[str] = None,
) -> Dict[str, str]:
    return {
        "AccessKeyId": access_key_id,
        "Action": TOKEN_ACTION,
        "Format": "JSON",
        "RegionId": region,
        "SignatureMethod": "HMAC-SHA1",
        "SignatureNonce": nonce or uuid.uuid4().hex,
        "SignatureVersion": "1.0",
        "Timestamp": timestamp or datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "Version": TOKEN_API_VERSION,
    }


def signed_token_url(token_url: str, access_key_id: str, secret: str, region: str = DEFAULT_REGION) -> str:
    params = build_token_params(access_key_id, region)
    signature = sign_params(params, secret)
    base = token_url if token_url.endswith("/") else token_url + "/"
    return f"{base}?Signature={percent_encode(signature)}&{canonical_query(params)}"


async def fetch_token(settings: Dict[str, Any], timeout: float = 10.0) -> str:
    """Return the configured token, or request a fresh one with the access key.

    Raises:
        AuthFailed: no credentials, HTTP failure, or no Token.Id in the reply
    """
    if settings.get("token"):
        return settings["token"]

    access_key_id = settings.get("access_key_id") or ""
    secret = settings.get("access_key_secret") or ""
    if not access_key_id or not secret:
        raise AuthFailed("missing Aliyun NLS token or access key")

    url = signed_token_url(
        settings.get("token_url") or "",
        access_key_id,
        secret,
        settings.get("region") or DEFAULT_REGION,
    )

    async with aiohttp.ClientSession() as session:
        try:
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
                response_text = await response.text()
        except asyncio.TimeoutError as e:
            raise AuthFailed(f"token request timeout after {timeout}s") from e
        except aiohttp.ClientError as e:
            raise AuthFailed(f"token request failed: {e}") from e

    if response.status != 200:
        logger.error(f"NLS token error {response.status}: {response_text}")
        raise AuthFailed(f"token request failed with status {response.status}")

    try:
        token = (json.loads(response_text).get("Token") or {}).get("Id")
    except (json.JSONDecodeError, AttributeError) as e:
        raise AuthFailed(f"token response is not valid JSON: {e}") from e
    if not token:
        raise AuthFailed("token response has no Token.Id")

    logger.info("NLS token acquired")
    return token
