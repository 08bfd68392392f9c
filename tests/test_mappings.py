"""Tests for the mapping store: create, resolve, delete, list and code uniqueness."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from linkpulse.core.mappings import (
    create_mapping,
    delete_mapping,
    list_by_owner,
    resolve_mapping,
    validate_original_url,
)
from linkpulse.errors import CodeSpaceExhausted, Forbidden, NotFound, ValidationError
from linkpulse.models.tables import UrlMapping


# ---------------------------------------------------------------------------
# URL validation
# ---------------------------------------------------------------------------

class TestValidateOriginalUrl:
    @pytest.mark.parametrize("url", [
        "https://example.com",
        "http://example.com/a?b=c#d",
        "https://sub.example.co.uk:8443/path",
        "https://93.184.216.34/x",
    ])
    def test_accepts_public_http_urls(self, url):
        assert validate_original_url(url) == url

    def test_strips_surrounding_whitespace(self):
        assert validate_original_url("  https://example.com/a  ") == "https://example.com/a"

    @pytest.mark.parametrize("url", [
        None,
        "",
        "   ",
        "example.com",
        "ftp://example.com/file",
        "javascript:alert(1)",
        "https://",
        "https://exa mple.com",
        "https://example.com:notaport/",
        "https://intranet/",
    ])
    def test_rejects_malformed(self, url):
        with pytest.raises(ValidationError):
            validate_original_url(url)

    @pytest.mark.parametrize("url", [
        "http://localhost:8000/admin",
        "http://127.0.0.1/",
        "http://10.0.0.5/",
        "http://192.168.1.1/",
        "http://169.254.169.254/latest/meta-data",
        "http://[::1]/",
    ])
    def test_rejects_internal_hosts(self, url):
        with pytest.raises(ValidationError):
            validate_original_url(url)

    def test_rejects_overlong_url(self):
        with pytest.raises(ValidationError):
            validate_original_url("https://example.com/" + "a" * 3000)


# ---------------------------------------------------------------------------
# create / resolve
# ---------------------------------------------------------------------------

class TestCreateResolve:
    def test_create_then_resolve_round_trip(self, run_store):
        urls = [
            "https://example.com/a",
            "http://example.org/path?q=1&r=2",
            "https://example.net/%E2%9C%93#frag",
        ]

        async def scenario(sm):
            out = []
            for url in urls:
                async with sm() as db:
                    created = await create_mapping(db, url, "owner")
                async with sm() as db:
                    resolved = await resolve_mapping(db, created.short_code)
                out.append((created, resolved))
            return out

        for url, (created, resolved) in zip(urls, run_store(scenario)):
            assert resolved.original_url == url
            assert resolved.short_code == created.short_code
            assert resolved.click_count == 0
            assert resolved.owner_id == "owner"

    def test_create_rejects_invalid_url_without_writing(self, run_store):
        async def scenario(sm):
            async with sm() as db:
                with pytest.raises(ValidationError):
                    await create_mapping(db, "not a url", "owner")
                page = await list_by_owner(db, "owner")
            return page.total_elements

        assert run_store(scenario) == 0

    def test_resolve_never_issued_code(self, run_store):
        async def scenario(sm):
            async with sm() as db:
                with pytest.raises(NotFound):
                    await resolve_mapping(db, "zzzzzzz")

        run_store(scenario)

    def test_collision_is_retried_with_a_new_code(self, run_store):
        codes = iter(["AAAAAAA", "AAAAAAA", "BBBBBBB"])

        async def scenario(sm):
            with patch("linkpulse.core.mappings.generate_short_code", side_effect=lambda: next(codes)):
                async with sm() as db:
                    first = await create_mapping(db, "https://example.com/1", "owner")
                async with sm() as db:
                    second = await create_mapping(db, "https://example.com/2", "owner")
            return first.short_code, second.short_code

        assert run_store(scenario) == ("AAAAAAA", "BBBBBBB")

    def test_exhausted_retries_raise_code_space_exhausted(self, run_store):
        async def scenario(sm):
            with patch("linkpulse.core.mappings.generate_short_code", return_value="SAMEONE"):
                async with sm() as db:
                    await create_mapping(db, "https://example.com/1", "owner")
                async with sm() as db:
                    with pytest.raises(CodeSpaceExhausted):
                        await create_mapping(db, "https://example.com/2", "owner")
                async with sm() as db:
                    return (await list_by_owner(db, "owner")).total_elements

        assert run_store(scenario) == 1

    def test_concurrent_creates_yield_distinct_codes(self, run_store):
        n, batch = 10_000, 200

        async def one(sm, i):
            async with sm() as db:
                m = await create_mapping(db, f"https://example.com/{i}", "owner")
                return m.short_code

        async def scenario(sm):
            codes = []
            for start in range(0, n, batch):
                codes += await asyncio.gather(*(one(sm, i) for i in range(start, start + batch)))
            async with sm() as db:
                stored = await db.scalar(select(func.count(func.distinct(UrlMapping.short_code))))
            return codes, stored

        codes, stored = run_store(scenario)
        assert len(codes) == n
        assert len(set(codes)) == n
        assert stored == n

    def test_concurrent_creates_with_forced_collisions_stay_unique(self, run_store):
        """Racing writers drawing from a tiny pool still never share a code."""
        pool = ["C0DE001", "C0DE002", "C0DE003", "C0DE004"]
        draws = iter(pool * 10)

        async def one(sm, i):
            async with sm() as db:
                try:
                    m = await create_mapping(db, f"https://example.com/{i}", "owner")
                except CodeSpaceExhausted:
                    return None
                return m.short_code

        async def scenario(sm):
            with patch("linkpulse.core.mappings.generate_short_code", side_effect=lambda: next(draws)):
                return await asyncio.gather(*(one(sm, i) for i in range(6)))

        codes = [c for c in run_store(scenario) if c is not None]
        assert len(codes) == len(set(codes))
        assert set(codes) <= set(pool)


# ---------------------------------------------------------------------------
# delete
# ---------------------------------------------------------------------------

class TestDelete:
    def test_only_owner_may_delete(self, run_store):
        async def scenario(sm):
            async with sm() as db:
                m = await create_mapping(db, "https://example.com/a", "alice")
            async with sm() as db:
                with pytest.raises(Forbidden):
                    await delete_mapping(db, m.short_code, "bob")
            async with sm() as db:
                still_there = await resolve_mapping(db, m.short_code)
            async with sm() as db:
                await delete_mapping(db, m.short_code, "alice")
            return still_there.original_url

        assert run_store(scenario) == "https://example.com/a"

    def test_deleted_code_resolves_to_not_found(self, run_store):
        async def scenario(sm):
            async with sm() as db:
                m = await create_mapping(db, "https://example.com/a", "alice")
            async with sm() as db:
                await delete_mapping(db, m.short_code, "alice")
            async with sm() as db:
                with pytest.raises(NotFound):
                    await resolve_mapping(db, m.short_code)
            async with sm() as db:
                with pytest.raises(NotFound):
                    await delete_mapping(db, m.short_code, "alice")

        run_store(scenario)

    def test_unknown_code_delete_is_not_found(self, run_store):
        async def scenario(sm):
            async with sm() as db:
                with pytest.raises(NotFound):
                    await delete_mapping(db, "nothere", "alice")

        run_store(scenario)

    def test_deleted_code_is_never_reallocated(self, run_store):
        async def scenario(sm):
            with patch("linkpulse.core.mappings.generate_short_code", return_value="REUSEME"):
                async with sm() as db:
                    await create_mapping(db, "https://example.com/a", "alice")
                async with sm() as db:
                    await delete_mapping(db, "REUSEME", "alice")
                async with sm() as db:
                    with pytest.raises(CodeSpaceExhausted):
                        await create_mapping(db, "https://evil.example.com/", "mallory")

        run_store(scenario)


# ---------------------------------------------------------------------------
# list_by_owner
# ---------------------------------------------------------------------------

def _seed(owner: str, n: int, base: datetime) -> list[UrlMapping]:
    # Every third mapping shares a timestamp with its neighbour to exercise the tie-break
    rows = []
    for i in range(n):
        rows.append(UrlMapping(
            short_code=f"p{i:05d}x",
            original_url=f"https://example.com/{i}",
            owner_id=owner,
            created_at=base + timedelta(seconds=(i // 3) * 10),
            click_count=0,
        ))
    return rows


class TestListByOwner:
    def test_pages_are_disjoint_ordered_and_complete(self, run_store):
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)

        async def scenario(sm):
            async with sm() as db:
                db.add_all(_seed("alice", 23, base))
                await db.commit()

            async with sm() as db:
                full = (await list_by_owner(db, "alice", 0, 100)).content
                expected = [m.short_code for m in full]

                results = {}
                for size in (1, 2, 3, 5, 7, 10, 22, 23, 50):
                    first = await list_by_owner(db, "alice", 0, size)
                    collected = []
                    for page_no in range(first.total_pages):
                        page = await list_by_owner(db, "alice", page_no, size)
                        collected.append([m.short_code for m in page.content])
                    results[size] = (first, collected)
                return expected, results

        expected, results = run_store(scenario)

        # newest first, ties broken by short code ascending
        assert len(expected) == 23
        ordered = sorted(
            _seed("alice", 23, base),
            key=lambda m: (-m.created_at.timestamp(), m.short_code),
        )
        assert expected == [m.short_code for m in ordered]

        for size, (first, pages) in results.items():
            flat = [code for page in pages for code in page]
            assert flat == expected, size
            assert len(flat) == len(set(flat))
            assert first.total_elements == 23
            assert first.first is True
            assert all(len(p) <= size for p in pages)

    def test_other_owners_and_deleted_are_excluded(self, run_store):
        async def scenario(sm):
            async with sm() as db:
                a1 = await create_mapping(db, "https://example.com/1", "alice")
            async with sm() as db:
                await create_mapping(db, "https://example.com/2", "alice")
            async with sm() as db:
                await create_mapping(db, "https://example.com/3", "bob")
            async with sm() as db:
                await delete_mapping(db, a1.short_code, "alice")
            async with sm() as db:
                return await list_by_owner(db, "alice")

        page = run_store(scenario)
        assert page.total_elements == 1
        assert [m.original_url for m in page.content] == ["https://example.com/2"]

    def test_empty_owner_and_past_the_end(self, run_store):
        async def scenario(sm):
            async with sm() as db:
                empty = await list_by_owner(db, "nobody")
                await create_mapping(db, "https://example.com/1", "alice")
            async with sm() as db:
                beyond = await list_by_owner(db, "alice", page=5, size=10)
            return empty, beyond

        empty, beyond = run_store(scenario)
        assert empty.content == []
        assert empty.total_elements == 0
        assert empty.total_pages == 0
        assert empty.first is True and empty.last is True
        assert beyond.content == []
        assert beyond.total_elements == 1

    def test_size_is_clamped(self, run_store):
        async def scenario(sm):
            async with sm() as db:
                return await list_by_owner(db, "alice", page=-3, size=10_000)

        page = run_store(scenario)
        assert page.size == 100
        assert page.number == 0
