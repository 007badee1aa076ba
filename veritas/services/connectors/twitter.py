"""
Social network A — X / Twitter API v2 (app-only bearer token).

Search uses ``/tweets/search/recent``; authors are resolved through the
``author_id`` expansion so no extra round-trip is needed per tweet.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from veritas.core.clock import isoformat_z, parse_iso, utcnow
from veritas.core.errors import SourceConnectionError
from veritas.schemas.posts import EngagementMetrics, RawPost, SearchOptions
from veritas.schemas.schemas import Platform
from veritas.services.connectors.base import clamp_credibility
from veritas.services.connectors.http import HttpConnector

logger = logging.getLogger(__name__)

API_BASE = "https://api.twitter.com/2"
TWEET_FIELDS = "author_id,created_at,public_metrics,lang"
USER_FIELDS = "username,name,verified,public_metrics,created_at"
EXPANSIONS = "author_id"
MIN_RESULTS, MAX_RESULTS = 10, 100


class TwitterConnector(HttpConnector):
    platform = Platform.TWITTER.value
    default_poll_interval = 60.0

    def __init__(self, transform_engine, bearer_token: Optional[str] = None, **kwargs):
        super().__init__(transform_engine, **kwargs)
        self._bearer_token = bearer_token

    async def _connect_to_api(self) -> None:
        if not self._bearer_token:
            raise SourceConnectionError(self.platform, "bearer token is not configured")
        await self._open_client(API_BASE, {"Authorization": f"Bearer {self._bearer_token}"})

    async def _search(self, query: str, options: SearchOptions) -> List[RawPost]:
        limit = options.limit or MAX_RESULTS
        params: Dict[str, Any] = {
            "query": query,
            "max_results": max(MIN_RESULTS, min(limit, MAX_RESULTS)),
            "tweet.fields": TWEET_FIELDS,
            "user.fields": USER_FIELDS,
            "expansions": EXPANSIONS,
        }
        if options.start_date:
            params["start_time"] = isoformat_z(options.start_date)
        if options.end_date:
            params["end_time"] = isoformat_z(options.end_date)

        result = await self._get_json("/tweets/search/recent", params)
        users = {u["id"]: u for u in result.get("includes", {}).get("users", [])}
        return [self._to_post(tweet, users.get(tweet.get("author_id", ""))) for tweet in result.get("data", [])]

    def _to_post(self, tweet: Dict[str, Any], user: Optional[Dict[str, Any]]) -> RawPost:
        metrics = tweet.get("public_metrics", {})
        return RawPost(
            id=tweet["id"],
            text=tweet.get("text", ""),
            timestamp=parse_iso(tweet["created_at"]) if tweet.get("created_at") else utcnow(),
            platform=self.platform,
            author_id=tweet.get("author_id", ""),
            author_name=user.get("name") if user else None,
            url=f"https://twitter.com/i/web/status/{tweet['id']}",
            engagement=EngagementMetrics.from_counts(
                likes=metrics.get("like_count", 0),
                shares=metrics.get("retweet_count", 0),
                comments=metrics.get("reply_count", 0),
                reach=metrics.get("impression_count", 0),
                share_weight=2.0,
            ),
            metadata={"lang": tweet.get("lang")},
        )

    async def _fetch_author(self, author_id: str) -> Dict[str, Any]:
        result = await self._get_json(f"/users/{author_id}", {"user.fields": USER_FIELDS})
        user = result.get("data", {})
        return {
            "name": user.get("name"),
            "credibility_score": self.credibility(user),
            "verification_status": "verified" if user.get("verified") else "unverified",
            "metadata": {
                "followers": user.get("public_metrics", {}).get("followers_count", 0),
            },
        }

    @staticmethod
    def credibility(user: Dict[str, Any]) -> float:
        followers = user.get("public_metrics", {}).get("followers_count", 0) or 0
        age_years = 0.0
        if user.get("created_at"):
            age_years = (utcnow() - parse_iso(user["created_at"])).days / 365
        return clamp_credibility(
            0.3,
            0.3 if user.get("verified") else 0.0,
            min(followers / 1_000_000, 0.2),
            min(age_years / 10, 0.2),
        )

    async def _check_credentials(self) -> bool:
        await self._get_json("/tweets/search/recent", {"query": "news", "max_results": MIN_RESULTS})
        return True
