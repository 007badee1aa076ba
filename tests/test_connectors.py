"""
Source adapter tests. HTTP connectors run against ``httpx.MockTransport``;
the video comment reader has its yt-dlp extraction patched out.
"""
import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import httpx
import pytest

from conftest import FailingLookupStore, StubConnector, StubOracle
from veritas.core.errors import FetchError, StorageError, TransformError
from veritas.schemas.posts import SearchOptions
from veritas.services.connectors.base import ConnectionState, _SeenSet, clamp_credibility, matches_keywords
from veritas.services.connectors.facebook import FacebookConnector
from veritas.services.connectors.reddit import RedditConnector, time_filter_for
from veritas.services.connectors.rss import RSSConnector, strip_markup
from veritas.services.connectors.twitter import TwitterConnector
from veritas.services.connectors.web_scraper import WebScraperConnector, parse_date, parse_relative_date
from veritas.services.connectors.youtube import YouTubeConnector
from veritas.services.transform.transform_service import TransformEngine

MARCH_15 = datetime(2024, 3, 15, 10, 0, tzinfo=timezone.utc)
MARCH_15_EPOCH = 1710496800


def json_response(payload, status=200):
    return httpx.Response(status, content=json.dumps(payload).encode(), headers={"content-type": "application/json"})


# ── Shared behaviour ─────────────────────────────────────────────────────

class TestHelpers:

    def test_matches_keywords(self):
        assert matches_keywords("Climate Summit", ["climate"])
        assert not matches_keywords("Football", ["climate", "energy"])
        assert matches_keywords("anything", [])

    def test_seen_set_is_bounded(self):
        seen = _SeenSet(maxlen=2)
        assert seen.add("a") and seen.add("b")
        assert not seen.add("b")
        assert seen.add("c")
        assert seen.add("a")

    def test_clamp_credibility(self):
        assert clamp_credibility(0.7, 0.6) == 1.0
        assert clamp_credibility(-0.2) == 0.0


class TestConnectorLifecycle:

    async def test_connect_is_idempotent(self, engine):
        connector = StubConnector(engine)
        await connector.connect()
        await connector.connect()
        assert connector.connect_calls == 1
        assert connector.state == ConnectionState.CONNECTED

    async def test_disconnect_closes_streams(self, engine, make_post):
        connector = StubConnector(engine, [make_post()])
        stream = connector.stream_content(["climate"])
        assert len(connector.active_streams) == 1

        await connector.disconnect()

        assert stream.closed
        assert connector.active_streams == {}
        assert connector.state == ConnectionState.DISCONNECTED
        await connector.disconnect()

    async def test_stream_content_emits_raw_posts_once(self, engine, make_post):
        connector = StubConnector(engine, [make_post(text="climate one"), make_post(text="climate two")])
        stream = connector.stream_content(["climate"])
        try:
            first = await stream.next_event(timeout=1)
            second = await stream.next_event(timeout=1)
            await asyncio.sleep(0.05)
            with pytest.raises(asyncio.TimeoutError):
                await stream.next_event(timeout=0.05)
        finally:
            await stream.aclose()
        assert {first.payload.text, second.payload.text} == {"climate one", "climate two"}

    async def test_stream_retries_posts_after_storage_error(self, transform_config, make_post):
        store = FailingLookupStore(failures=1)
        engine = TransformEngine(transform_config, StubOracle(), store)
        connector = StubConnector(engine, [make_post(text="climate one")])
        stream = connector.stream_and_transform(["climate"])
        try:
            failed = await stream.next_event(timeout=1)
            delivered = await stream.next_event(timeout=1)
        finally:
            await stream.aclose()

        assert failed.is_error and isinstance(failed.error, StorageError)
        assert not delivered.is_error
        assert await store.count() == 1
        assert await store.find_by_content_hash(delivered.payload.content_hash) == delivered.payload

    async def test_stream_does_not_retry_malformed_posts(self, engine, store, make_post):
        connector = StubConnector(engine, [make_post(text="climate one", author_id="")])
        stream = connector.stream_and_transform(["climate"])
        try:
            failed = await stream.next_event(timeout=1)
            await asyncio.sleep(0.05)
            with pytest.raises(asyncio.TimeoutError):
                await stream.next_event(timeout=0.05)
        finally:
            await stream.aclose()

        assert failed.is_error and isinstance(failed.error, TransformError)
        assert connector.polls > 1
        assert await store.count() == 0

    async def test_search_filters_by_date_and_limit(self, engine, make_post):
        posts = [make_post(text=f"p{d}", timestamp=MARCH_15 + timedelta(days=d)) for d in range(5)]
        connector = StubConnector(engine, posts)
        found = await connector.search_content(
            "p", SearchOptions(start_date=MARCH_15 + timedelta(days=1), limit=2),
        )
        assert [p.text for p in found] == ["p1", "p2"]

    async def test_validate_credentials_marks_unavailable(self, engine):
        connector = StubConnector(engine, fail=True)
        assert await connector.validate_credentials() is False
        assert connector.state == ConnectionState.UNAVAILABLE

    async def test_author_details_are_hashed(self, engine):
        profile = await StubConnector(engine, platform="stub").get_author_details("real-handle")
        assert profile.source_hash == engine.source_hash("real-handle", "stub")
        assert "real-handle" not in profile.model_dump_json()


# ── Social network A ─────────────────────────────────────────────────────

TWEETS = {
    "data": [{
        "id": "1769",
        "text": "Climate march draws thousands",
        "author_id": "u1",
        "created_at": "2024-03-15T10:00:00.000Z",
        "public_metrics": {"like_count": 10, "retweet_count": 4, "reply_count": 2, "impression_count": 200},
    }],
    "includes": {"users": [{"id": "u1", "name": "Ann", "username": "ann"}]},
}


class TestTwitterConnector:

    def _connector(self, engine, handler, token="bearer-xyz"):
        return TwitterConnector(engine, bearer_token=token, transport=httpx.MockTransport(handler))

    async def test_search_maps_tweets(self, engine):
        seen = {}

        def handler(request: httpx.Request):
            seen["auth"] = request.headers.get("authorization")
            seen["path"] = request.url.path
            seen["max_results"] = request.url.params.get("max_results")
            return json_response(TWEETS)

        connector = self._connector(engine, handler)
        posts = await connector.search_content("climate")
        await connector.disconnect()

        assert seen == {"auth": "Bearer bearer-xyz", "path": "/2/tweets/search/recent", "max_results": "100"}
        post = posts[0]
        assert post.author_id == "u1" and post.author_name == "Ann"
        assert post.timestamp == MARCH_15
        assert post.engagement.total == 16
        assert post.engagement.reach == 200
        assert post.engagement.virality_score == pytest.approx(0.1)

    async def test_search_and_transform(self, engine, store):
        connector = self._connector(engine, lambda request: json_response(TWEETS))
        insights = await connector.search_and_transform("climate")
        await connector.disconnect()
        assert len(insights) == 1
        assert insights[0].platform == "twitter"
        assert await store.count() == 1

    async def test_http_error_is_fetch_error(self, engine):
        connector = self._connector(engine, lambda request: json_response({"title": "down"}, status=503))
        with pytest.raises(FetchError):
            await connector.search_content("climate")
        await connector.disconnect()

    async def test_missing_token_fails_validation(self, engine):
        connector = self._connector(engine, lambda request: json_response(TWEETS), token=None)
        assert await connector.validate_credentials() is False
        assert connector.state == ConnectionState.UNAVAILABLE

    def test_credibility(self):
        user = {"verified": True, "public_metrics": {"followers_count": 500_000}}
        assert TwitterConnector.credibility(user) == pytest.approx(0.8)


# ── Social network B ─────────────────────────────────────────────────────

REDDIT_LISTING = {"data": {"children": [{"data": {
    "name": "t3_abc",
    "title": "Climate bill passes senate",
    "selftext": "",
    "created_utc": MARCH_15_EPOCH,
    "author": "redditor",
    "permalink": "/r/news/comments/abc/",
    "score": 50,
    "num_comments": 7,
    "num_crossposts": 1,
    "subreddit": "news",
}}]}}


class TestRedditConnector:

    async def test_token_exchange_then_search(self, engine):
        requests = []

        def handler(request: httpx.Request):
            requests.append(request)
            if request.url.host == "www.reddit.com":
                return json_response({"access_token": "tok-1", "token_type": "bearer"})
            return json_response(REDDIT_LISTING)

        connector = RedditConnector(
            engine, client_id="cid", client_secret="secret", transport=httpx.MockTransport(handler),
        )
        posts = await connector.search_content("climate")
        await connector.disconnect()

        token_request, search_request = requests
        assert token_request.method == "POST"
        assert token_request.headers["authorization"].startswith("Basic ")
        assert b"grant_type=client_credentials" in token_request.content
        assert search_request.url.host == "oauth.reddit.com"
        assert search_request.headers["authorization"] == "Bearer tok-1"

        post = posts[0]
        assert post.id == "t3_abc"
        assert post.text == "Climate bill passes senate"
        assert post.timestamp == MARCH_15
        assert post.url == "https://reddit.com/r/news/comments/abc/"
        assert post.engagement.total == 58

    async def test_failed_token_exchange(self, engine):
        connector = RedditConnector(
            engine, client_id="cid", client_secret="wrong",
            transport=httpx.MockTransport(lambda request: json_response({"error": "invalid_grant"}, status=401)),
        )
        assert await connector.validate_credentials() is False

    def test_time_filter(self):
        now = datetime.now(timezone.utc)
        assert time_filter_for(SearchOptions()) == "all"
        assert time_filter_for(SearchOptions(start_date=now - timedelta(hours=2))) == "day"
        assert time_filter_for(SearchOptions(start_date=now - timedelta(days=3))) == "week"
        assert time_filter_for(SearchOptions(start_date=now - timedelta(days=200))) == "year"


# ── Social network C ─────────────────────────────────────────────────────

PAGE_POSTS = {"data": [
    {
        "id": "page1_1",
        "message": "Our climate plan is live",
        "created_time": "2024-03-15T10:00:00+0000",
        "from": {"id": "page1", "name": "Ministry"},
        "reactions": {"summary": {"total_count": 12}},
        "shares": {"count": 3},
        "comments": {"summary": {"total_count": 4}},
        "insights": {"data": [{"name": "post_impressions", "values": [{"value": 500}]}]},
    },
    {"id": "page1_2", "message": "Sports day photos", "created_time": "2024-03-15T11:00:00+0000"},
]}


class TestFacebookConnector:

    async def test_page_feed_filtered_locally(self, engine):
        seen = {}

        def handler(request: httpx.Request):
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("authorization")
            seen["token_in_query"] = "access_token" in request.url.params
            return json_response(PAGE_POSTS)

        connector = FacebookConnector(
            engine, access_token="fb-token", page_id="page1", transport=httpx.MockTransport(handler),
        )
        posts = await connector.search_content("climate")
        await connector.disconnect()

        assert seen == {"path": "/v19.0/page1/posts", "auth": "Bearer fb-token", "token_in_query": False}
        assert [p.id for p in posts] == ["page1_1"]
        assert posts[0].timestamp == MARCH_15
        assert posts[0].engagement.total == 19
        assert posts[0].engagement.reach == 500

    async def test_unconfigured_is_unavailable(self, engine):
        connector = FacebookConnector(engine, access_token=None, page_id=None)
        assert await connector.validate_credentials() is False

    def test_credibility(self):
        assert FacebookConnector.credibility({"verification_status": "blue_verified", "fan_count": 2_000_000}) == 1.0
        assert FacebookConnector.credibility({"fan_count": 50}) == pytest.approx(0.1)


# ── Feed reader ──────────────────────────────────────────────────────────

RSS_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"><channel>
  <title>World News</title>
  <item>
    <title>Climate summit opens</title>
    <link>https://news.example.com/climate-summit</link>
    <guid>https://news.example.com/climate-summit</guid>
    <description>&lt;p&gt;Delegates &lt;b&gt;gather&lt;/b&gt; in Geneva.&lt;/p&gt;</description>
    <pubDate>Fri, 15 Mar 2024 10:00:00 GMT</pubDate>
  </item>
  <item>
    <title>Football results</title>
    <link>https://news.example.com/football</link>
    <pubDate>Fri, 15 Mar 2024 11:00:00 GMT</pubDate>
  </item>
</channel></rss>"""


def feed_handler(request: httpx.Request):
    if request.url.path == "/world.xml":
        return httpx.Response(200, content=RSS_XML, headers={"content-type": "application/rss+xml"})
    return httpx.Response(404)


class TestRSSConnector:

    async def test_search_parses_and_filters_entries(self, engine):
        connector = RSSConnector(
            engine,
            feeds={"world": "https://feeds.example.com/world.xml", "gone": "https://feeds.example.com/gone.xml"},
            transport=httpx.MockTransport(feed_handler),
        )
        posts = await connector.search_content("climate")
        await connector.disconnect()

        assert len(posts) == 1
        post = posts[0]
        assert post.text == "Climate summit opens\n\nDelegates gather in Geneva."
        assert post.timestamp == MARCH_15
        assert post.url == "https://news.example.com/climate-summit"
        assert post.author_id == "world"

    async def test_add_feed_validates(self, engine):
        connector = RSSConnector(engine, transport=httpx.MockTransport(feed_handler))
        assert await connector.validate_credentials() is False
        assert await connector.add_feed("world", "https://feeds.example.com/world.xml") is True
        assert await connector.add_feed("gone", "https://feeds.example.com/gone.xml") is False
        assert list(connector.feeds) == ["world"]
        assert connector.remove_feed("world") is True
        await connector.disconnect()

    def test_strip_markup(self):
        assert strip_markup("<p>Hello <i>world</i></p>") == "Hello world"
        assert strip_markup("") == ""


# ── Web scraper ──────────────────────────────────────────────────────────

ARTICLES_HTML = """
<html><body>
  <article class="story">
    <h2>Climate accord signed</h2>
    <p class="summary">Leaders agree on emissions cuts.</p>
    <span class="byline">Ann Lee</span>
    <time datetime="2024-03-15T10:00:00Z">March 15</time>
    <a class="story-link" href="/news/1">Read more</a>
  </article>
  <article class="story">
    <h2>Transfer window news</h2>
    <p class="summary">A striker moves clubs.</p>
  </article>
  <article class="story"><h2>No body</h2></article>
</body></html>
"""

SCRAPE_CONFIG = {
    "name": "example_news",
    "url": "https://news.example.com/latest",
    "article_selector": "article.story",
    "title_selector": "h2",
    "content_selector": ".summary",
    "author_selector": ".byline",
    "date_selector": "time",
    "url_selector": "a.story-link",
}


class TestWebScraperConnector:

    async def test_scrape_with_selectors(self, engine):
        connector = WebScraperConnector(
            engine,
            configs=[SCRAPE_CONFIG],
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text=ARTICLES_HTML)),
        )
        posts = await connector.search_content("climate")
        await connector.disconnect()

        assert len(posts) == 1
        post = posts[0]
        assert post.text == "Climate accord signed\n\nLeaders agree on emissions cuts."
        assert post.url == "https://news.example.com/news/1"
        assert post.author_id == "Ann Lee"
        assert post.timestamp == MARCH_15
        assert post.id.startswith("example_news-")

    async def test_failed_page_contributes_nothing(self, engine):
        connector = WebScraperConnector(
            engine, configs=[SCRAPE_CONFIG],
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        assert await connector.search_content("climate") == []
        await connector.disconnect()

    def test_invalid_config_is_rejected(self, engine):
        with pytest.raises(ValueError):
            WebScraperConnector(engine).add_scrape_config({"name": "missing-url"})

    def test_parse_dates(self):
        now = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)
        assert parse_date("2024-03-15T10:00:00Z") == MARCH_15
        assert parse_date("Fri, 15 Mar 2024 10:00:00 GMT") == MARCH_15
        assert parse_relative_date("2 hours ago", now) == MARCH_15
        assert parse_relative_date("yesterday", now) == now - timedelta(days=1)
        assert parse_relative_date("3 weeks ago", now) == now - timedelta(weeks=3)


# ── Video comments ───────────────────────────────────────────────────────

def fake_extract(url, opts):
    if url.startswith("ytsearchdate"):
        return {"entries": [{"id": "vid1"}, None, {"title": "no id"}]}
    if url == "https://www.youtube.com/watch?v=vid1":
        assert opts["getcomments"] is True
        return {
            "view_count": 1000,
            "comments": [
                {"id": "c1", "text": "Climate is warming fast", "timestamp": MARCH_15_EPOCH,
                 "author_id": "UC1", "author": "@bob", "like_count": 5},
                {"id": "c2", "text": "", "timestamp": MARCH_15_EPOCH, "author_id": "UC2"},
            ],
        }
    if url.startswith("https://www.youtube.com/channel/"):
        return {"channel": "Bob", "channel_follower_count": 150_000, "channel_is_verified": True}
    raise AssertionError(url)


class TestYouTubeConnector:

    async def test_search_collects_comments(self, engine):
        with patch.object(YouTubeConnector, "_extract_with_ytdlp", side_effect=fake_extract):
            posts = await YouTubeConnector(engine).search_content("climate")

        assert len(posts) == 1
        post = posts[0]
        assert post.id == "vid1:c1"
        assert post.author_id == "UC1"
        assert post.timestamp == MARCH_15
        assert post.engagement.likes == 5
        assert post.engagement.reach == 1000

    async def test_extraction_failure_is_fetch_error(self, engine):
        import yt_dlp

        def broken(url, opts):
            raise yt_dlp.utils.DownloadError("HTTP Error 429")

        with patch.object(YouTubeConnector, "_extract_with_ytdlp", side_effect=broken):
            with pytest.raises(FetchError):
                await YouTubeConnector(engine).search_content("climate")

    async def test_author_details(self, engine):
        with patch.object(YouTubeConnector, "_extract_with_ytdlp", side_effect=fake_extract):
            profile = await YouTubeConnector(engine).get_author_details("UC1")
        assert profile.verification_status == "verified"
        assert profile.credibility_score == pytest.approx(0.9)
        assert profile.name == "Bob"
