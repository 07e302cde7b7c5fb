# tests/test_reference_resolver.py
import asyncio
import base64

import pytest

from panelgen.features.references.service import BatchReferences, ReferenceResolver
from panelgen.schemas import CameraAngle, CharacterProfile

from conftest import hosted_url, tiny_png


@pytest.mark.asyncio
async def test_resolve_groups_urls_by_angle(resolver, profiles, ref_dir):
    refs = await resolver.resolve_one(profiles["theresa"])
    frontal = hosted_url((ref_dir / "theresa_frontal.png").read_bytes())
    three_q = hosted_url((ref_dir / "theresa_three_quarter_left.png").read_bytes())
    assert refs.character_id == "theresa"
    assert refs.all_urls == (frontal, three_q)
    assert refs.urls_by_angle[CameraAngle.FRONTAL] == (frontal,)
    assert refs.urls_by_angle[CameraAngle.THREE_QUARTER_LEFT] == (three_q,)


@pytest.mark.asyncio
async def test_reference_set_is_read_only(resolver, profiles):
    refs = await resolver.resolve_one(profiles["ben"])
    with pytest.raises(TypeError):
        refs.urls_by_angle[CameraAngle.BACK] = ("x",)
    with pytest.raises(AttributeError):
        refs.all_urls = ()


@pytest.mark.asyncio
async def test_each_distinct_character_resolved_once(resolver, profiles, monkeypatch):
    calls = []
    original = resolver.resolve_one

    async def counting(profile):
        calls.append(profile.id)
        return await original(profile)

    monkeypatch.setattr(resolver, "resolve_one", counting)
    out = await resolver.resolve(["theresa", "ben", "theresa", "ben", "theresa"], profiles)
    assert sorted(calls) == ["ben", "theresa"]
    assert set(out) == {"theresa", "ben"}


@pytest.mark.asyncio
async def test_batch_memo_returns_identical_set(resolver, profiles):
    batch = BatchReferences(resolver, profiles)
    a, b = await asyncio.gather(batch.get("theresa"), batch.get("theresa"))
    c = await batch.get("theresa")
    assert a is b is c


@pytest.mark.asyncio
async def test_identical_images_uploaded_once(host, ref_dir):
    (ref_dir / "ref-1.jpg").write_bytes(tiny_png((1, 2, 3)))
    profile = CharacterProfile(id="theresa", display_name="T", reference_image_paths=["ref-1.jpg"] * 4)
    resolver = ReferenceResolver(host, reference_dir=ref_dir)
    refs = await resolver.resolve_one(profile)
    assert len(refs.all_urls) == 4
    assert len(set(refs.all_urls)) == 1
    assert len(host.uploaded) == 1
    # untagged images only show up in the flat list
    assert dict(refs.urls_by_angle) == {}

    await resolver.resolve_one(profile)
    assert len(host.uploaded) == 1


@pytest.mark.asyncio
async def test_expired_uploads_are_refreshed(host, ref_dir):
    now = [0.0]
    host.url_ttl = 100
    resolver = ReferenceResolver(host, reference_dir=ref_dir, clock=lambda: now[0])
    profile = CharacterProfile(id="ben", display_name="Ben", reference_image_paths=["ben_frontal.png"])
    await resolver.resolve_one(profile)
    now[0] = 50
    await resolver.resolve_one(profile)
    assert len(host.uploads) == 1
    now[0] = 500
    await resolver.resolve_one(profile)
    assert len(host.uploads) == 2


@pytest.mark.asyncio
async def test_hosted_and_inline_locators(resolver):
    data = tiny_png((9, 9, 9), size=(20, 20))
    inline = "data:image/png;base64," + base64.b64encode(data).decode()
    profile = CharacterProfile(
        id="ben",
        display_name="Ben",
        reference_image_paths=["https://cdn.example.com/refs/ben_back.jpg", inline],
    )
    refs = await resolver.resolve_one(profile)
    assert refs.all_urls == ("https://cdn.example.com/refs/ben_back.jpg", hosted_url(data))
    assert refs.urls_by_angle[CameraAngle.BACK] == ("https://cdn.example.com/refs/ben_back.jpg",)


@pytest.mark.asyncio
async def test_discovers_files_when_profile_lists_none(resolver):
    profile = CharacterProfile(id="theresa", display_name="Theresa")
    refs = await resolver.resolve_one(profile)
    assert set(refs.urls_by_angle) == {CameraAngle.FRONTAL, CameraAngle.THREE_QUARTER_LEFT}


@pytest.mark.asyncio
async def test_unreadable_locators_are_skipped(resolver, profiles):
    profile = profiles["ben"].model_copy(update={"reference_image_paths": ["missing.jpg", "ben_frontal.png"]})
    refs = await resolver.resolve_one(profile)
    assert len(refs.all_urls) == 1


@pytest.mark.asyncio
async def test_failure_degrades_to_empty_set(resolver, host, profiles):
    host.fail = True
    out = await resolver.resolve(["theresa"], profiles)
    assert out["theresa"].is_empty
    assert dict(out["theresa"].urls_by_angle) == {}


@pytest.mark.asyncio
async def test_nothing_readable_degrades_to_empty_set(resolver):
    profile = CharacterProfile(id="ghost", display_name="Ghost", reference_image_paths=["nope.jpg"])
    refs = await resolver.resolve_safe(profile)
    assert refs.is_empty
    assert refs.character_id == "ghost"


@pytest.mark.asyncio
async def test_expired_uploads_leave_the_cache(host, ref_dir):
    now = [0.0]
    host.url_ttl = 100
    resolver = ReferenceResolver(host, reference_dir=ref_dir, clock=lambda: now[0])
    await resolver.host_inline(base64.b64encode(tiny_png((1, 1, 1))).decode())
    await resolver.host_inline(base64.b64encode(tiny_png((2, 2, 2))).decode())
    assert resolver.cached_uploads == 2

    now[0] = 500
    await resolver.host_inline(base64.b64encode(tiny_png((3, 3, 3))).decode())
    assert resolver.cached_uploads == 1


@pytest.mark.asyncio
async def test_upload_cache_is_bounded_without_url_expiry(host, ref_dir):
    resolver = ReferenceResolver(host, reference_dir=ref_dir, max_cached_uploads=2)
    first = tiny_png((1, 1, 1))
    for color in [(1, 1, 1), (2, 2, 2), (3, 3, 3)]:
        url = await resolver.host_inline(base64.b64encode(tiny_png(color)).decode())
        assert url == hosted_url(tiny_png(color))
    assert resolver.cached_uploads == 2

    # the oldest entry was evicted, so it is published again
    await resolver.host_inline(base64.b64encode(first).decode())
    assert host.uploaded.count(first) == 2


@pytest.mark.asyncio
async def test_character_without_profile_gets_empty_set(resolver, profiles, host):
    out = await BatchReferences(resolver, profiles).resolve_all(["theresa", "ghost"])
    assert out["ghost"].character_id == "ghost"
    assert out["ghost"].is_empty
    assert not out["theresa"].is_empty
