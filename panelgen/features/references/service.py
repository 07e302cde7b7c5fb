# panelgen/features/references/service.py
"""
Turn a character's reference locators into hosted URLs grouped by camera angle.

Locators may be local files (relative ones live in the reference directory),
inline base64 / data URLs, or http(s) URLs that are already hosted. Local and
inline images are uploaded through the configured image host; uploads are
cached by content hash so the same bytes are only published once while their
URL is still valid.
"""
from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import unquote, urlparse

from panelgen.lib.angles import parse_reference_filename
from panelgen.lib.errors import PanelPipelineError, ReferenceResolutionError
from panelgen.lib.image_host import ImageHost, ImagePayload
from panelgen.lib.imaging import content_hash, decode_image_b64, is_inline_image, shrink_image, verify_image
from panelgen.logger import get_logger
from panelgen.schemas import CameraAngle, CharacterProfile, ReferenceSet

log = get_logger(__name__)

REFERENCE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")

# re-upload a bit before a signed URL would actually expire
_TTL_MARGIN = 0.9

# hosts without expiring URLs would otherwise grow the cache forever
MAX_CACHED_UPLOADS = 512

# one loaded locator: (angle tag or None, hosted url or None, payload or None)
_Loaded = Tuple[Optional[CameraAngle], Optional[str], Optional[ImagePayload]]


def _angle_of(locator: str) -> Optional[CameraAngle]:
    name = unquote(urlparse(locator).path) if locator.startswith(("http://", "https://")) else locator
    parsed = parse_reference_filename(Path(name).name)
    return parsed[1] if parsed else None


class ReferenceResolver:
    def __init__(
        self,
        host: ImageHost,
        *,
        reference_dir: Path | str,
        max_side: int = 1024,
        clock: Callable[[], float] = time.monotonic,
        max_cached_uploads: int = MAX_CACHED_UPLOADS,
    ):
        self.host = host
        self.reference_dir = Path(reference_dir)
        self.max_side = max_side
        self._clock = clock
        self.max_cached_uploads = max_cached_uploads
        self._uploads: Dict[str, Tuple[str, Optional[float]]] = {}  # sha1 -> (url, expires_at)

    # ---------------------------------------------------------------
    # public
    # ---------------------------------------------------------------

    async def resolve(
        self,
        character_ids: Iterable[str],
        profiles: Mapping[str, CharacterProfile],
    ) -> Dict[str, ReferenceSet]:
        """Resolve each distinct character once, all of them concurrently."""
        return await BatchReferences(self, profiles).resolve_all(character_ids)

    async def resolve_safe(self, profile: CharacterProfile) -> ReferenceSet:
        """resolve_one, but a failure degrades to an empty set instead of raising."""
        try:
            return await self.resolve_one(profile)
        except (PanelPipelineError, OSError, ValueError) as e:
            log.warning(f"reference resolution failed for {profile.id}; continuing without references: {e}")
            return ReferenceSet(character_id=profile.id)

    async def resolve_one(self, profile: CharacterProfile) -> ReferenceSet:
        locators = list(profile.reference_image_paths) or self.discover(profile.id)
        if not locators:
            log.info(f"{profile.id}: no reference images configured")
            return ReferenceSet(character_id=profile.id)

        loaded: List[_Loaded] = []
        for loc in locators:
            try:
                loaded.append(await self._load(loc))
            except (OSError, ValueError) as e:
                log.warning(f"{profile.id}: skipping unreadable reference {loc[:80]!r}: {e}")
        if not loaded:
            raise ReferenceResolutionError(profile.id, f"none of {len(locators)} reference image(s) could be read")

        payloads = [p for _, url, p in loaded if url is None and p is not None]
        hosted = iter(await self._host_payloads(payloads))

        by_angle: Dict[CameraAngle, List[str]] = {}
        all_urls: List[str] = []
        for angle, url, _ in loaded:
            if url is None:
                url = next(hosted)
            all_urls.append(url)
            if angle is not None:
                by_angle.setdefault(angle, []).append(url)

        refs = ReferenceSet(character_id=profile.id, urls_by_angle=by_angle, all_urls=tuple(all_urls))
        log.info(
            f"{profile.id}: {len(all_urls)} reference url(s), angles "
            f"{sorted(a.value for a in refs.urls_by_angle) or ['untagged']}"
        )
        return refs

    async def host_inline(self, image_data: str) -> str:
        """Publish an inline image (data URL or raw base64) and return its URL."""
        payload = decode_image_b64(image_data)
        return (await self._host_payloads([payload]))[0]

    def discover(self, character_id: str) -> List[str]:
        """Files named `{character_id}_{angle}[_{variant}].{ext}` in the reference directory."""
        if not self.reference_dir.is_dir():
            return []
        found: List[str] = []
        for path in sorted(self.reference_dir.iterdir()):
            if path.suffix.lower() not in REFERENCE_EXTENSIONS:
                continue
            parsed = parse_reference_filename(path.name)
            if parsed and parsed[0] == character_id.lower():
                found.append(str(path))
        if found:
            log.debug(f"{character_id}: discovered {len(found)} reference file(s)")
        return found

    # ---------------------------------------------------------------
    # loading / uploading
    # ---------------------------------------------------------------

    async def _load(self, locator: str) -> _Loaded:
        if locator.startswith(("http://", "https://")):
            return _angle_of(locator), locator, None
        if is_inline_image(locator):
            data, ctype = decode_image_b64(locator)
            return None, None, (data, ctype)

        path = Path(locator)
        if not path.is_absolute() and not path.exists():
            path = self.reference_dir / locator
        payload = await asyncio.to_thread(self._read_local, path)
        return _angle_of(path.name), None, payload

    def _read_local(self, path: Path) -> ImagePayload:
        data = path.read_bytes()
        verify_image(data)
        return shrink_image(data, self.max_side)

    async def _host_payloads(self, payloads: List[ImagePayload]) -> List[str]:
        """Upload whatever is not cached yet (each distinct image once) and return URLs in input order."""
        now = self._clock()
        self._prune(now)
        keys = [content_hash(data) for data, _ in payloads]

        # snapshot before awaiting: other batches may prune the cache meanwhile
        urls_by_key: Dict[str, str] = {k: self._uploads[k][0] for k in keys if k in self._uploads}
        pending: Dict[str, ImagePayload] = {}
        for key, payload in zip(keys, payloads):
            if key not in urls_by_key and key not in pending:
                pending[key] = payload

        if pending:
            log.debug(f"uploading {len(pending)} new reference image(s), {len(payloads) - len(pending)} cached")
            urls = await self.host.upload_many(list(pending.values()))
            ttl = getattr(self.host, "url_ttl", None)
            expires_at = now + ttl * _TTL_MARGIN if ttl else None
            for key, url in zip(pending.keys(), urls):
                self._uploads[key] = (url, expires_at)
                urls_by_key[key] = url

        # oldest entries go first
        while len(self._uploads) > self.max_cached_uploads:
            del self._uploads[next(iter(self._uploads))]
        return [urls_by_key[key] for key in keys]

    def _prune(self, now: float) -> None:
        expired = [k for k, (_, expires_at) in self._uploads.items() if expires_at is not None and expires_at <= now]
        for key in expired:
            del self._uploads[key]
        if expired:
            log.debug(f"dropped {len(expired)} expired upload(s) from the cache")

    @property
    def cached_uploads(self) -> int:
        return len(self._uploads)


async def _empty_set(character_id: str) -> ReferenceSet:
    return ReferenceSet(character_id=character_id)


class BatchReferences:
    """
    Reference sets for one batch. Each character is resolved by exactly one
    task; every caller asking for that character awaits the same task and so
    receives the identical ReferenceSet object.
    """

    def __init__(self, resolver: ReferenceResolver, profiles: Mapping[str, CharacterProfile]):
        self.resolver = resolver
        self.profiles = profiles
        self._tasks: Dict[str, asyncio.Task] = {}

    def get(self, character_id: str) -> "asyncio.Task[ReferenceSet]":
        task = self._tasks.get(character_id)
        if task is None:
            profile = self.profiles.get(character_id)
            if profile is None:
                log.warning(f"no profile for character {character_id!r}; continuing without references")
                task = asyncio.ensure_future(_empty_set(character_id))
            else:
                task = asyncio.ensure_future(self.resolver.resolve_safe(profile))
            self._tasks[character_id] = task
        return task

    async def resolve_all(self, character_ids: Iterable[str]) -> Dict[str, ReferenceSet]:
        ids = list(dict.fromkeys(character_ids))
        sets = await asyncio.gather(*(self.get(cid) for cid in ids))
        return dict(zip(ids, sets))
