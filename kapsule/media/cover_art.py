"""
Cover-art generation and durable storage.

Generation returns a temporary provider URL that expires after a short time.
``store_generated_cover`` downloads that URL and re-uploads the bytes to the
cover-art bucket under the owning user's folder.
"""
from __future__ import annotations

import ipaddress
import socket
import time
from urllib.parse import urlparse

import httpx
from fastapi import HTTPException
from openai import AsyncOpenAI, OpenAIError

from kapsule.core.errors import sanitize_error
from kapsule.core.logging import get_logger
from kapsule.core.settings import get_settings
from kapsule.core.supabase_storage import StorageUploadError, upload_object

logger = get_logger("media.cover_art")

STORE_FAILURE_MESSAGE = "Failed to store generated artwork. Please try again."


class CoverArtError(RuntimeError):
    pass


async def generate_cover_art(prompt: str, *, api_key: str) -> str:
    settings = get_settings()
    client = AsyncOpenAI(api_key=api_key, timeout=settings.PROVIDER_TIMEOUT_SECONDS)
    try:
        response = await client.images.generate(
            model=settings.COVER_ART_MODEL,
            prompt=prompt,
            n=1,
            size=settings.COVER_ART_SIZE,
        )
    except OpenAIError as exc:
        message = sanitize_error(exc, default_message="image generation failed")
        logger.error("cover_art.generate_failed", extra={"component": "media", "error": message})
        raise CoverArtError(message) from exc

    url = response.data[0].url if response.data else None
    if not url:
        raise CoverArtError("Image provider returned no URL")
    logger.info("cover_art.generated", extra={"component": "media", "prompt_length": len(prompt)})
    return url


def _is_blocked_ip(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    )


def resolve_public_ips(host: str) -> list[ipaddress.IPv4Address | ipaddress.IPv6Address]:
    try:
        results = socket.getaddrinfo(host, None, proto=socket.IPPROTO_TCP)
    except socket.gaierror as exc:
        raise CoverArtError("image host resolution failed") from exc

    addresses = []
    for result in results:
        sockaddr = result[4]
        if not sockaddr:
            continue
        ip = ipaddress.ip_address(sockaddr[0])
        if _is_blocked_ip(ip):
            raise CoverArtError(f"blocked image host address: {ip}")
        addresses.append(ip)

    if not addresses:
        raise CoverArtError("image host has no routable addresses")
    return addresses


def validate_image_url(url: str) -> str:
    """Reject URLs that could reach the service's own network.

    Only http/https with a public host is accepted. Literal IPs are checked
    directly and hostnames are resolved, and every address must be public.
    """
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"}:
        raise CoverArtError("only http/https URLs are allowed")
    if not parsed.hostname:
        raise CoverArtError("missing URL host")
    if parsed.username or parsed.password:
        raise CoverArtError("credentials in image URL are not allowed")

    host = parsed.hostname.strip().lower()
    if host == "localhost" or host.endswith(".local"):
        raise CoverArtError("localhost and .local hosts are blocked")

    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        resolve_public_ips(host)
    else:
        if _is_blocked_ip(ip):
            raise CoverArtError(f"blocked image host address: {ip}")
    return url


async def download_image(url: str, *, max_bytes: int, timeout_seconds: float = 30.0) -> bytes:
    safe_url = validate_image_url(url)
    content = bytearray()
    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds), follow_redirects=False) as client:
            async with client.stream("GET", safe_url) as response:
                if 300 <= response.status_code < 400:
                    raise CoverArtError("image host redirects are not allowed")
                response.raise_for_status()

                declared_len = response.headers.get("content-length")
                if declared_len and declared_len.isdigit() and int(declared_len) > max_bytes:
                    raise CoverArtError("downloaded image exceeds size limit")

                async for chunk in response.aiter_bytes():
                    content.extend(chunk)
                    if len(content) > max_bytes:
                        raise CoverArtError("downloaded image exceeds size limit")
    except httpx.HTTPError as exc:
        raise CoverArtError(sanitize_error(exc, default_message="image download failed")) from exc

    if not content:
        raise CoverArtError("downloaded image is empty")
    return bytes(content)


def cover_object_path(user_id: str, *, now_ms: int | None = None) -> str:
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{user_id}/{timestamp}-generated-cover.png"


async def store_generated_cover(user_id: str, temporary_url: str) -> str:
    """Persist a generated image and return its public URL.

    Every failure is reported as ``CoverArtError`` carrying the single
    user-facing message; the cause is logged.
    """
    settings = get_settings()
    try:
        content = await download_image(
            temporary_url,
            max_bytes=settings.COVER_ART_MAX_BYTES,
            timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS,
        )
        path = cover_object_path(user_id)
        public_url = await upload_object(
            settings.COVER_ART_BUCKET,
            path,
            content,
            content_type="image/png",
            cache_control="3600",
        )
    except (CoverArtError, StorageUploadError, HTTPException) as exc:
        logger.error(
            "cover_art.store_failed",
            extra={
                "component": "media",
                "user_id": user_id,
                "error": sanitize_error(exc, default_message="store failed"),
            },
        )
        raise CoverArtError(STORE_FAILURE_MESSAGE) from exc

    logger.info(
        "cover_art.stored",
        extra={"component": "media", "user_id": user_id, "path": path, "bytes": len(content)},
    )
    return public_url
