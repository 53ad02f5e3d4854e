from urllib.parse import quote

import httpx

from kapsule.core.settings import get_settings
from kapsule.core.supabase_rest import supabase_service_role_headers


class StorageUploadError(RuntimeError):
    pass


def public_object_url(bucket: str, path: str) -> str:
    settings = get_settings()
    encoded_bucket = quote(bucket, safe="")
    encoded_path = quote(path, safe="/")
    return f"{settings.SUPABASE_URL.rstrip('/')}/storage/v1/object/public/{encoded_bucket}/{encoded_path}"


async def upload_object(
    bucket: str,
    path: str,
    content: bytes,
    *,
    content_type: str,
    cache_control: str = "3600",
) -> str:
    """Upload bytes to a storage bucket and return the object's public URL."""
    settings = get_settings()
    encoded_bucket = quote(bucket, safe="")
    encoded_path = quote(path, safe="/")
    url = f"{settings.SUPABASE_URL.rstrip('/')}/storage/v1/object/{encoded_bucket}/{encoded_path}"

    headers = supabase_service_role_headers()
    headers["Content-Type"] = content_type
    headers["cache-control"] = f"max-age={cache_control}"
    headers["x-upsert"] = "false"

    try:
        async with httpx.AsyncClient(timeout=30.0) as client:
            response = await client.post(url, content=content, headers=headers)
            response.raise_for_status()
    except httpx.HTTPError as exc:
        raise StorageUploadError(f"storage upload failed for {bucket}/{path}") from exc

    return public_object_url(bucket, path)
