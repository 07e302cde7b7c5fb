# panelgen/lib/image_host.py
"""
Publishing images at URLs the generation provider can fetch.

Two backends: Google Cloud Storage with V4 signed URLs (default) and imgbb.
Both expose `upload_many`, which keeps the output order equal to the input order.
"""
from __future__ import annotations

import asyncio
import base64
import os
from datetime import timedelta
from typing import List, Optional, Protocol, Sequence, Tuple

import httpx
from google.cloud import storage

from panelgen.config import Config
from panelgen.lib.errors import TransportError
from panelgen.lib.imaging import content_hash
from panelgen.logger import get_logger

log = get_logger(__name__)

ImagePayload = Tuple[bytes, str]  # (bytes, content_type)

_EXT = {"image/png": "png", "image/jpeg": "jpg", "image/webp": "webp", "image/gif": "gif"}


class ImageHost(Protocol):
    # Seconds an uploaded URL stays valid; None means it does not expire.
    url_ttl: Optional[float]

    async def upload_many(self, images: Sequence[ImagePayload]) -> List[str]: ...

# -------------------------------------------------------------------
# Google Cloud Storage
# -------------------------------------------------------------------

def _signing_creds():
    import google.auth
    from google.auth import impersonated_credentials
    # Base creds from runtime (Cloud Run SA token)
    base_creds, _ = google.auth.default(scopes=["https://www.googleapis.com/auth/cloud-platform"])
    # A key file already carries a signer
    if getattr(base_creds, "signer", None):
        return base_creds
    # Otherwise impersonate a service account that CAN sign
    target_sa = os.getenv("GCS_SIGNING_SERVICE_ACCOUNT")
    if not target_sa:
        try:
            from google.auth.compute_engine import metadata
            target_sa = metadata.get_service_account_email()
        except Exception as e:
            log.debug(f"no service account email from metadata: {e}")
    if not target_sa:
        raise RuntimeError("Cannot sign URLs: set GCS_SIGNING_SERVICE_ACCOUNT to the service account email.")
    return impersonated_credentials.Credentials(
        source_credentials=base_creds,
        target_principal=target_sa,
        target_scopes=[
            "https://www.googleapis.com/auth/devstorage.read_write",
            "https://www.googleapis.com/auth/cloud-platform",
        ],
        lifetime=3600,
    )


class GCSImageHost:
    def __init__(self, bucket: str, *, signed_url_ttl: int = 3600, prefix: str = "references", client=None):
        if not bucket:
            raise ValueError("GCS_BUCKET not configured")
        self.bucket_name = bucket
        self.prefix = prefix.strip("/")
        self.url_ttl = float(signed_url_ttl)
        self._storage = client
        self._creds = None

    def _client(self):
        if self._storage is None:
            self._storage = storage.Client()
        return self._storage

    def _upload_sync(self, data: bytes, content_type: str) -> str:
        # content-addressed, so re-uploading the same bytes overwrites one object
        object_name = f"{self.prefix}/{content_hash(data)}.{_EXT.get(content_type, 'bin')}"
        blob = self._client().bucket(self.bucket_name).blob(object_name)
        blob.cache_control = "public, max-age=31536000"
        blob.upload_from_string(data, content_type=content_type)

        if self._creds is None:
            self._creds = _signing_creds()
        signed_url = blob.generate_signed_url(
            version="v4",
            expiration=timedelta(seconds=int(self.url_ttl)),
            method="GET",
            credentials=self._creds,
        )
        log.debug(f"uploaded gs://{self.bucket_name}/{object_name}")
        return signed_url

    async def upload_many(self, images: Sequence[ImagePayload]) -> List[str]:
        # storage SDK is blocking; keep it off the event loop
        try:
            return list(await asyncio.gather(
                *(asyncio.to_thread(self._upload_sync, data, ctype) for data, ctype in images)
            ))
        except Exception as e:
            raise TransportError(f"GCS upload failed: {e}") from e

# -------------------------------------------------------------------
# imgbb
# -------------------------------------------------------------------

IMGBB_UPLOAD_URL = "https://api.imgbb.com/1/upload"


class ImgbbImageHost:
    url_ttl: Optional[float] = None

    def __init__(self, api_key: str, http: httpx.AsyncClient, *, upload_url: str = IMGBB_UPLOAD_URL):
        if not api_key:
            raise ValueError("IMGBB_API_KEY not configured")
        self.api_key = api_key
        self.upload_url = upload_url
        self._http = http

    async def _upload(self, data: bytes, content_type: str) -> str:
        form = {
            "key": self.api_key,
            "image": base64.b64encode(data).decode("ascii"),
            "name": f"ref_{content_hash(data)[:12]}",
        }
        try:
            resp = await self._http.post(self.upload_url, data=form)
        except httpx.HTTPError as e:
            raise TransportError(f"imgbb upload failed: {e}") from e
        if resp.status_code >= 400:
            raise TransportError(f"imgbb upload failed: HTTP {resp.status_code} {resp.text[:200]}",
                                 status_code=resp.status_code)
        body = resp.json()
        url = ((body.get("data") or {}).get("url")) if body.get("success", True) else None
        if not url:
            raise TransportError(f"imgbb upload returned no url: {body}")
        log.debug(f"uploaded reference to {url}")
        return url

    async def upload_many(self, images: Sequence[ImagePayload]) -> List[str]:
        return list(await asyncio.gather(*(self._upload(data, ctype) for data, ctype in images)))


def make_image_host(cfg: Config, http: httpx.AsyncClient) -> ImageHost:
    if cfg.image_host == "imgbb":
        return ImgbbImageHost(cfg.imgbb_api_key, http)
    if cfg.image_host == "gcs":
        return GCSImageHost(cfg.gcs_bucket, signed_url_ttl=cfg.signed_url_ttl)
    raise ValueError(f"unknown IMAGE_HOST {cfg.image_host!r}; expected 'gcs' or 'imgbb'")
