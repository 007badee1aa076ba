"""
Video comment reader — YouTube comments through yt-dlp.

Search resolves the query to the newest matching videos (``ytsearchdate``),
then extracts top comments for each. yt-dlp is blocking, so every
extraction runs in the default executor.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

import yt_dlp

from veritas.core.clock import from_epoch, utcnow
from veritas.core.errors import FetchError
from veritas.schemas.posts import EngagementMetrics, RawPost, SearchOptions
from veritas.schemas.schemas import Platform
from veritas.services.connectors.base import BaseConnector, clamp_credibility

logger = logging.getLogger(__name__)

BASE_OPTS: Dict[str, Any] = {
    "quiet": True,
    "no_warnings": True,
    "skip_download": True,
}


def subscriber_score(subscribers: int) -> float:
    if subscribers > 1_000_000:
        return 0.4
    if subscribers > 100_000:
        return 0.3
    if subscribers > 10_000:
        return 0.2
    if subscribers > 1_000:
        return 0.1
    return 0.0


class YouTubeConnector(BaseConnector):
    platform = Platform.YOUTUBE.value
    default_poll_interval = 300.0
    stream_lookback = timedelta(days=1)

    def __init__(
        self,
        transform_engine,
        videos_per_search: int = 5,
        comments_per_video: int = 50,
        poll_interval: Optional[float] = None,
    ):
        super().__init__(transform_engine, poll_interval=poll_interval)
        self.videos_per_search = videos_per_search
        self.comments_per_video = comments_per_video

    async def _connect_to_api(self) -> None:
        # yt-dlp needs no session; connecting only marks the adapter usable.
        return None

    @staticmethod
    def _extract_with_ytdlp(url: str, opts: dict) -> Optional[dict]:
        with yt_dlp.YoutubeDL(opts) as ydl:
            return ydl.extract_info(url, download=False)

    async def _extract(self, url: str, opts: dict) -> Optional[dict]:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._extract_with_ytdlp, url, opts)
        except yt_dlp.utils.YoutubeDLError as e:
            raise FetchError(self.platform, f"yt-dlp extraction failed: {e}") from e

    # ── Search ───────────────────────────────────────────────────────────

    async def _search_videos(self, query: str, count: int) -> List[Dict[str, Any]]:
        opts = {**BASE_OPTS, "extract_flat": "in_playlist"}
        info = await self._extract(f"ytsearchdate{count}:{query}", opts)
        return [entry for entry in (info or {}).get("entries", []) if entry and entry.get("id")]

    async def _video_comments(self, video: Dict[str, Any], max_comments: int) -> List[RawPost]:
        opts = {
            **BASE_OPTS,
            "getcomments": True,
            "extractor_args": {
                "youtube": {
                    "comment_sort": ["new"],
                    "max_comments": [str(max_comments), str(max_comments), "0", "0"],
                }
            },
        }
        video_id = video["id"]
        try:
            info = await self._extract(f"https://www.youtube.com/watch?v={video_id}", opts)
        except FetchError as e:
            logger.warning(f"Comment fetch failed for video {video_id}: {e}")
            return []
        if not info:
            return []

        reach = info.get("view_count") or video.get("view_count") or 0
        posts = []
        for comment in info.get("comments") or []:
            text = comment.get("text", "")
            if not text:
                continue
            posts.append(RawPost(
                id=f"{video_id}:{comment.get('id', '')}",
                text=text,
                timestamp=from_epoch(comment["timestamp"]) if comment.get("timestamp") else utcnow(),
                platform=self.platform,
                author_id=comment.get("author_id") or comment.get("author", "unknown"),
                author_name=comment.get("author"),
                url=f"https://www.youtube.com/watch?v={video_id}&lc={comment.get('id', '')}",
                engagement=EngagementMetrics.from_counts(
                    likes=comment.get("like_count") or 0,
                    reach=reach,
                ),
                metadata={"video_id": video_id},
            ))
        return posts

    async def _search(self, query: str, options: SearchOptions) -> List[RawPost]:
        videos = await self._search_videos(query, self.videos_per_search)
        per_video = self.comments_per_video
        if options.limit:
            per_video = min(per_video, max(options.limit, 1))

        posts: List[RawPost] = []
        for video in videos:
            posts.extend(await self._video_comments(video, per_video))
            if options.limit and len(posts) >= options.limit:
                break
        posts.sort(key=lambda p: p.timestamp, reverse=True)
        return posts

    # ── Authors ──────────────────────────────────────────────────────────

    async def _fetch_author(self, author_id: str) -> Dict[str, Any]:
        opts = {**BASE_OPTS, "extract_flat": True, "playlistend": 1}
        info = await self._extract(f"https://www.youtube.com/channel/{author_id}", opts) or {}
        subscribers = info.get("channel_follower_count") or 0
        verified = bool(info.get("channel_is_verified"))
        return {
            "name": info.get("channel") or info.get("uploader"),
            "credibility_score": clamp_credibility(
                0.3, 0.3 if verified else 0.0, subscriber_score(subscribers),
            ),
            "verification_status": "verified" if verified else "unverified",
            "metadata": {"subscribers": subscribers},
        }

    async def _check_credentials(self) -> bool:
        videos = await self._search_videos("news", 1)
        return bool(videos)
