"""Tests for source fetching and caching."""

import pytest

from vidblock.errors import SourceFetchError
from vidblock.playlist_cache import PlaylistCache
from vidblock.source_fetcher import SourceFetcher, cache_key, video_from_item


def _fetcher(client, clock, **kwargs):
    return SourceFetcher(
        client=client,
        cache=PlaylistCache(3600, clock=clock),
        custom_cache=PlaylistCache(600, clock=clock),
        page_delay=0,
        clock=clock,
        **kwargs,
    )


@pytest.mark.unit
def test_video_from_item_cleans_and_parses(item_factory):
    item = item_factory("abc", "Nirvana - Lithium (Official Music Video)")
    video = video_from_item(item, "PLsource1234567")
    assert video.id == "abc"
    assert video.title == "Nirvana - Lithium"
    assert video.artist == "Nirvana"
    assert video.song == "Lithium"
    assert video.playlist_id == "PLsource1234567"

    live = video_from_item(item, "PLsource1234567", channel_hint="live")
    assert live.artist is None

    assert video_from_item({"snippet": {"title": "x"}}, "PL") is None


@pytest.mark.unit
def test_fetch_pages_until_exhausted(empty_client, clock):
    empty_client.add_videos("PLbigAAAAAAAAAAA1", "v", 120)
    sleeps = []
    fetcher = SourceFetcher(client=empty_client, page_delay=0.1, clock=clock, sleep=sleeps.append)

    videos = fetcher.fetch("PLbigAAAAAAAAAAA1")

    assert [v.id for v in videos] == [f"v{idx:02d}" for idx in range(120)]
    assert len(empty_client.page_calls) == 3
    assert sleeps == [0.1, 0.1]


@pytest.mark.unit
def test_fetch_short_circuits_at_max_items(empty_client, clock):
    empty_client.add_videos("PLbigAAAAAAAAAAA1", "v", 120)
    fetcher = _fetcher(empty_client, clock)

    videos = fetcher.fetch("PLbigAAAAAAAAAAA1", max_items=60)

    assert [v.id for v in videos] == [f"v{idx:02d}" for idx in range(60)]
    assert len(empty_client.page_calls) == 2


@pytest.mark.unit
def test_fetch_drops_sentinel_items(empty_client, clock, item_factory):
    empty_client.add_playlist(
        "PLmixedAAAAAAAAA1",
        [
            item_factory("a", "Song A"),
            item_factory("gone", "Deleted video"),
            item_factory("hidden", "Private video"),
            item_factory("b", "Song B"),
        ],
    )
    fetcher = _fetcher(empty_client, clock)
    assert [v.id for v in fetcher.fetch("PLmixedAAAAAAAAA1")] == ["a", "b"]


@pytest.mark.unit
def test_fetch_failure_returns_empty_unless_strict(empty_client, clock):
    empty_client.failing.add("PLbrokenAAAAAAAA1")
    fetcher = _fetcher(empty_client, clock)

    assert fetcher.fetch("PLbrokenAAAAAAAA1") == []
    with pytest.raises(SourceFetchError) as excinfo:
        fetcher.fetch("PLbrokenAAAAAAAA1", strict=True)
    assert excinfo.value.source_id == "PLbrokenAAAAAAAA1"


@pytest.mark.unit
def test_fetch_deadline_bounds_each_request(empty_client, clock):
    empty_client.add_videos("PLslowAAAAAAAAAA1", "v", 150)
    timeouts = []
    original = empty_client.list_playlist_page

    def slow_page(playlist_id, page_token=None, timeout=15.0):
        timeouts.append(timeout)
        clock.advance(40)
        return original(playlist_id, page_token, timeout)

    empty_client.list_playlist_page = slow_page
    fetcher = _fetcher(empty_client, clock)

    assert fetcher.fetch("PLslowAAAAAAAAAA1") == []
    assert timeouts == [60.0, 20.0]


@pytest.mark.unit
def test_cached_source_not_refetched_within_ttl(fake_client, clock):
    fetcher = _fetcher(fake_client, clock)

    first = fetcher.get_official("PLrockAAAAAAAAAA1")
    clock.advance(3599)
    second = fetcher.get_official("PLrockAAAAAAAAAA1")

    assert [v.id for v in first] == [v.id for v in second]
    assert fake_client.fetch_count("PLrockAAAAAAAAAA1") == 1

    clock.advance(1)
    fetcher.get_official("PLrockAAAAAAAAAA1")
    assert fake_client.fetch_count("PLrockAAAAAAAAAA1") == 2


@pytest.mark.unit
def test_cached_list_is_a_copy(fake_client, clock):
    fetcher = _fetcher(fake_client, clock)
    items = fetcher.get_official("PLrockAAAAAAAAAA1")
    items.clear()
    assert len(fetcher.get_official("PLrockAAAAAAAAAA1")) == 20


@pytest.mark.unit
def test_failed_fetch_is_cached_as_empty(fake_client, clock):
    fake_client.failing.add("PLrockAAAAAAAAAA1")
    fetcher = _fetcher(fake_client, clock)

    assert fetcher.get_official("PLrockAAAAAAAAAA1") == []
    assert fetcher.get_official("PLrockAAAAAAAAAA1") == []
    assert fake_client.fetch_count("PLrockAAAAAAAAAA1") == 1


@pytest.mark.unit
def test_strict_official_fetch_raises_but_still_caches_empty(fake_client, clock):
    fake_client.failing.add("PLrockAAAAAAAAAA1")
    fetcher = _fetcher(fake_client, clock)

    with pytest.raises(SourceFetchError):
        fetcher.get_official("PLrockAAAAAAAAAA1", strict=True)
    assert fetcher.cache.get("PLrockAAAAAAAAAA1") == []


@pytest.mark.unit
def test_custom_sources_are_capped(empty_client, clock):
    empty_client.add_videos("PLcustomAAAAAAAA1", "c", 130)
    fetcher = _fetcher(empty_client, clock)

    videos = fetcher.get_custom("PLcustomAAAAAAAA1")

    assert len(videos) == 100
    assert "PLcustomAAAAAAAA1" in fetcher.custom_cache
    assert "PLcustomAAAAAAAA1" not in fetcher.cache


@pytest.mark.unit
def test_get_many_isolates_failures(fake_client, clock):
    fake_client.failing.add("PLrockBBBBBBBBBB2")
    fetcher = _fetcher(fake_client, clock)

    results = fetcher.get_many(["PLrockAAAAAAAAAA1", "PLrockBBBBBBBBBB2", "PLjazzAAAAAAAAAA1"])

    assert [len(items) for items in results] == [20, 0, 15]


@pytest.mark.unit
def test_upstream_error_message_is_logged(empty_client, clock, caplog):
    empty_client.failing.add("PLbrokenAAAAAAAA1")
    fetcher = _fetcher(empty_client, clock)
    with caplog.at_level("WARNING"):
        fetcher.fetch("PLbrokenAAAAAAAA1")
    assert "PLbrokenAAAAAAAA1" in caplog.text


@pytest.mark.unit
def test_cache_key_separates_unsplit_contexts():
    assert cache_key("PLrockAAAAAAAAAA1") == "PLrockAAAAAAAAAA1"
    assert cache_key("PLrockAAAAAAAAAA1", "rock") == "PLrockAAAAAAAAAA1"
    assert cache_key("PLrockAAAAAAAAAA1", "live") == "PLrockAAAAAAAAAA1:unsplit"


@pytest.mark.unit
def test_same_source_parsed_per_context(fake_client, clock):
    fetcher = _fetcher(fake_client, clock)

    live = fetcher.get_custom("PLrockAAAAAAAAAA1", "live")
    music = fetcher.get_custom("PLrockAAAAAAAAAA1", "rock")

    assert all(video.artist is None for video in live)
    assert music[0].artist == "Artist rockA00"
    assert music[0].song == "Song rockA00"
    assert fake_client.fetch_count("PLrockAAAAAAAAAA1") == 2


@pytest.mark.unit
def test_sample_slices_a_cached_source(fake_client, clock):
    fetcher = _fetcher(fake_client, clock)
    fetcher.get_official("PLrockAAAAAAAAAA1")

    sample = fetcher.get_sample("PLrockAAAAAAAAAA1", 5)

    assert [video.id for video in sample] == [f"rockA{idx:02d}" for idx in range(5)]
    assert fake_client.fetch_count("PLrockAAAAAAAAAA1") == 1


@pytest.mark.unit
def test_cold_sample_reads_only_needed_pages(empty_client, clock):
    empty_client.add_videos("PLbigAAAAAAAAAAA1", "big", 130)
    fetcher = _fetcher(empty_client, clock)

    sample = fetcher.get_sample("PLbigAAAAAAAAAAA1", 50)

    assert len(sample) == 50
    assert empty_client.page_calls == [("PLbigAAAAAAAAAAA1", None)]
    assert "PLbigAAAAAAAAAAA1" not in fetcher.cache
    assert len(fetcher.get_official("PLbigAAAAAAAAAAA1")) == 130
