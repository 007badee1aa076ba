"""
Social network B — Reddit OAuth API.

Uses the client-credentials grant, or the password grant when a script
account is configured. Tokens are exchanged at connect time.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from veritas.core.clock import as_utc, from_epoch, utcnow
from veritas.core.errors import SourceConnectionError
from veritas.schemas.posts import EngagementMetrics, RawPost, SearchOptions
from veritas.schemas.schemas import Platform
from veritas.services.connectors.base import clamp_credibility
from veritas.services.connectors.http import HttpConnector

logger = logging.getLogger(__name__)

TOKEN_URL = "https://www.reddit.com/api/v1/access_token"
API_BASE = "https://oauth.reddit.com"
MAX_LIMIT = 100


def time_filter_for(options: SearchOptions) -> str:
    if options.start_date is None:
        return "all"
    age = utcnow() - as_utc(options.start_date)
    if age.days < 1:
        return "day"
    if age.days < 7:
        return "week"
    if age.days < 31:
        return "month"
    if age.days < 366:
        return "year"
    return "all"


class RedditConnector(HttpConnector):
    platform = Platform.REDDIT.value
    default_poll_interval = 60.0

    def __init__(
        self,
        transform_engine,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(transform_engine, **kwargs)
        self._client_id = client_id
        self._client_secret = client_secret
        self._username = username
        self._password = password

    async def _connect_to_api(self) -> None:
        if not self._client_id or not self._client_secret:
            raise SourceConnectionError(self.platform, "client id/secret are not configured")

        if self._username and self._password:
            grant = {"grant_type": "password", "username": self._username, "password": self._password}
        else:
            grant = {"grant_type": "client_credentials"}

        auth_client = await self._open_client()
        try:
            response = await auth_client.post(TOKEN_URL, data=grant, auth=(self._client_id, self._client_secret))
            response.raise_for_status()
            token = response.json().get("access_token")
        except (httpx.HTTPError, ValueError) as e:
            await self._close_client()
            raise SourceConnectionError(self.platform, f"token exchange failed: {type(e).__name__}") from e
        if not token:
            await self._close_client()
            raise SourceConnectionError(self.platform, "token exchange returned no access token")

        await self._open_client(API_BASE, {"Authorization": f"Bearer {token}"})

    async def _search(self, query: str, options: SearchOptions) -> List[RawPost]:
        params = {
            "q": query,
            "sort": "new",
            "t": time_filter_for(options),
            "limit": min(options.limit or MAX_LIMIT, MAX_LIMIT),
            "type": "link",
            "raw_json": 1,
        }
        result = await self._get_json("/search", params)
        children = result.get("data", {}).get("children", [])
        return [self._to_post(child.get("data", {})) for child in children if child.get("data")]

    def _to_post(self, post: Dict[str, Any]) -> RawPost:
        text = post.get("selftext") or post.get("title", "")
        return RawPost(
            id=post.get("name") or post.get("id", ""),
            text=text,
            timestamp=from_epoch(post["created_utc"]) if post.get("created_utc") else utcnow(),
            platform=self.platform,
            author_id=post.get("author", ""),
            author_name=post.get("author"),
            url=f"https://reddit.com{post['permalink']}" if post.get("permalink") else post.get("url"),
            engagement=EngagementMetrics.from_counts(
                likes=post.get("score", 0),
                shares=post.get("num_crossposts", 0),
                comments=post.get("num_comments", 0),
                reach=post.get("view_count") or 0,
            ),
            metadata={"subreddit": post.get("subreddit")},
        )

    async def _fetch_author(self, author_id: str) -> Dict[str, Any]:
        result = await self._get_json(f"/user/{author_id}/about")
        user = result.get("data", {})
        return {
            "name": user.get("name"),
            "credibility_score": self.credibility(user),
            "verification_status": "verified" if user.get("has_verified_email") else "unverified",
            "metadata": {"karma": (user.get("link_karma") or 0) + (user.get("comment_karma") or 0)},
        }

    @staticmethod
    def credibility(user: Dict[str, Any]) -> float:
        karma = (user.get("link_karma") or 0) + (user.get("comment_karma") or 0)
        age_years = 0.0
        if user.get("created_utc"):
            age_years = (utcnow() - from_epoch(user["created_utc"])).days / 365
        return clamp_credibility(
            min(karma / 100_000, 0.3),
            min(age_years, 0.2),
            0.2 if user.get("has_verified_email") else 0.0,
            0.2 if user.get("is_mod") else 0.0,
            0.1 if user.get("is_gold") else 0.0,
        )

    async def _check_credentials(self) -> bool:
        await self._get_json("/r/popular/hot", {"limit": 1})
        return True
