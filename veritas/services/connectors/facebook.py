"""
Social network C — Facebook Graph API, page feed.

The Graph API has no public keyword search over page posts, so the page
feed for the requested window is fetched and filtered locally.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from veritas.core.clock import as_utc, parse_iso, utcnow
from veritas.core.errors import SourceConnectionError
from veritas.schemas.posts import EngagementMetrics, RawPost, SearchOptions
from veritas.schemas.schemas import Platform
from veritas.services.connectors.base import clamp_credibility, matches_keywords
from veritas.services.connectors.http import HttpConnector

logger = logging.getLogger(__name__)

POST_FIELDS = ",".join([
    "id", "message", "created_time", "from", "permalink_url",
    "reactions.summary(total_count)", "shares", "comments.summary(total_count)",
    "insights.metric(post_impressions)",
])
PAGE_FIELDS = "id,name,verification_status,fan_count,link"
MAX_LIMIT = 100


def fan_count_score(fan_count: int) -> float:
    if fan_count > 1_000_000:
        return 0.5
    if fan_count > 100_000:
        return 0.4
    if fan_count > 10_000:
        return 0.3
    if fan_count > 1_000:
        return 0.2
    return 0.1


class FacebookConnector(HttpConnector):
    platform = Platform.FACEBOOK.value
    default_poll_interval = 60.0

    def __init__(
        self,
        transform_engine,
        access_token: Optional[str] = None,
        page_id: Optional[str] = None,
        api_version: str = "v19.0",
        **kwargs,
    ):
        super().__init__(transform_engine, **kwargs)
        self._access_token = access_token
        self.page_id = page_id
        self.api_version = api_version

    async def _connect_to_api(self) -> None:
        if not self._access_token or not self.page_id:
            raise SourceConnectionError(self.platform, "access token/page id are not configured")
        await self._open_client(
            f"https://graph.facebook.com/{self.api_version}",
            {"Authorization": f"Bearer {self._access_token}"},
        )

    async def _search(self, query: str, options: SearchOptions) -> List[RawPost]:
        params: Dict[str, Any] = {
            "fields": POST_FIELDS,
            "limit": min(options.limit or MAX_LIMIT, MAX_LIMIT),
        }
        if options.start_date:
            params["since"] = int(as_utc(options.start_date).timestamp())
        if options.end_date:
            params["until"] = int(as_utc(options.end_date).timestamp())

        result = await self._get_json(f"/{self.page_id}/posts", params)
        terms = [t.strip() for t in query.replace(" OR ", "\n").splitlines() if t.strip()]
        return [
            self._to_post(post) for post in result.get("data", [])
            if matches_keywords(post.get("message", ""), terms)
        ]

    def _to_post(self, post: Dict[str, Any]) -> RawPost:
        impressions = 0
        for metric in post.get("insights", {}).get("data", []):
            if metric.get("name") == "post_impressions" and metric.get("values"):
                impressions = metric["values"][0].get("value", 0) or 0
        author = post.get("from") or {}
        return RawPost(
            id=post["id"],
            text=post.get("message", ""),
            timestamp=parse_iso(post["created_time"]) if post.get("created_time") else utcnow(),
            platform=self.platform,
            author_id=author.get("id") or self.page_id,
            author_name=author.get("name"),
            url=post.get("permalink_url") or f"https://facebook.com/{post['id']}",
            engagement=EngagementMetrics.from_counts(
                likes=post.get("reactions", {}).get("summary", {}).get("total_count", 0),
                shares=post.get("shares", {}).get("count", 0),
                comments=post.get("comments", {}).get("summary", {}).get("total_count", 0),
                reach=impressions,
            ),
        )

    async def _fetch_author(self, author_id: str) -> Dict[str, Any]:
        page = await self._get_json(f"/{author_id}", {"fields": PAGE_FIELDS})
        verified = page.get("verification_status") in ("verified", "blue_verified")
        return {
            "name": page.get("name"),
            "credibility_score": self.credibility(page),
            "verification_status": "verified" if verified else "unverified",
            "metadata": {"fan_count": page.get("fan_count", 0)},
        }

    @staticmethod
    def credibility(page: Dict[str, Any]) -> float:
        verified = page.get("verification_status") in ("verified", "blue_verified")
        return clamp_credibility(0.5 if verified else 0.0, fan_count_score(page.get("fan_count") or 0))

    async def _check_credentials(self) -> bool:
        page = await self._get_json(f"/{self.page_id}", {"fields": "id,name"})
        return bool(page.get("id"))
