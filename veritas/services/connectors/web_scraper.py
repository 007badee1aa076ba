"""
Web scraper connector — CSS-selector extraction with BeautifulSoup.

Each site is described by a ScrapeConfig (article/title/content selectors,
optional author/date/link selectors). Dates may be absolute (ISO-8601,
RFC 2822) or relative ("3 hours ago", "yesterday").
"""
from __future__ import annotations

import hashlib
import logging
import re
from datetime import datetime, timedelta
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup
from pydantic import BaseModel, ValidationError as PydanticValidationError

from veritas.core.clock import as_utc, parse_iso, utcnow
from veritas.schemas.posts import RawPost, SearchOptions
from veritas.schemas.schemas import Platform
from veritas.services.connectors.base import matches_keywords
from veritas.services.connectors.http import HttpConnector

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 2000

RELATIVE_UNITS = [
    (re.compile(r"min"), "minutes"),
    (re.compile(r"hour|hr"), "hours"),
    (re.compile(r"week|wk"), "weeks"),
    (re.compile(r"day"), "days"),
    (re.compile(r"month"), "months"),
    (re.compile(r"year|yr"), "years"),
]
NUMBER = re.compile(r"\d+")


class ScrapeConfig(BaseModel):
    name: str
    url: str
    article_selector: str = "article"
    title_selector: str = "h1, h2"
    content_selector: str = ".article-content, .content, p"
    author_selector: Optional[str] = None
    date_selector: Optional[str] = "time, .date"
    url_selector: Optional[str] = "a"
    base_url: Optional[str] = None


def parse_relative_date(text: str, now: Optional[datetime] = None) -> datetime:
    now = now or utcnow()
    lowered = text.lower()
    if "yesterday" in lowered:
        return now - timedelta(days=1)
    match = NUMBER.search(lowered)
    amount = int(match.group(0)) if match else 1
    for pattern, unit in RELATIVE_UNITS:
        if pattern.search(lowered):
            if unit == "months":
                return now - timedelta(days=30 * amount)
            if unit == "years":
                return now - timedelta(days=365 * amount)
            return now - timedelta(**{unit: amount})
    return now


def parse_date(text: str, now: Optional[datetime] = None) -> datetime:
    text = (text or "").strip()
    if not text:
        return now or utcnow()
    try:
        return parse_iso(text)
    except ValueError:
        pass
    try:
        return as_utc(parsedate_to_datetime(text))
    except (TypeError, ValueError):
        pass
    return parse_relative_date(text, now)


class WebScraperConnector(HttpConnector):
    platform = Platform.WEB.value
    default_poll_interval = 3600.0
    stream_lookback = timedelta(days=1)

    def __init__(self, transform_engine, configs: Optional[Sequence[Any]] = None, **kwargs):
        super().__init__(transform_engine, **kwargs)
        self.configs: Dict[str, ScrapeConfig] = {}
        for config in configs or []:
            self.add_scrape_config(config)

    def add_scrape_config(self, config: Any) -> ScrapeConfig:
        if not isinstance(config, ScrapeConfig):
            try:
                config = ScrapeConfig(**config)
            except PydanticValidationError as e:
                raise ValueError(f"invalid scrape config: {e}") from e
        self.configs[config.name] = config
        return config

    def remove_scrape_config(self, name: str) -> bool:
        return self.configs.pop(name, None) is not None

    async def _connect_to_api(self) -> None:
        await self._open_client()

    # ── Scraping ─────────────────────────────────────────────────────────

    async def scrape(self, config: ScrapeConfig) -> List[RawPost]:
        try:
            response = await self.client.get(config.url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Scrape of {config.name} failed: {e}")
            return []

        soup = BeautifulSoup(response.text, "html.parser")
        base = config.base_url or config.url
        posts: List[RawPost] = []
        for article in soup.select(config.article_selector):
            title_el = article.select_one(config.title_selector)
            title = title_el.get_text(" ", strip=True) if title_el else ""
            content = " ".join(
                el.get_text(" ", strip=True) for el in article.select(config.content_selector)
            ).strip()
            if not title or not content:
                continue

            link = ""
            if config.url_selector:
                link_el = article.select_one(config.url_selector)
                if link_el is not None and link_el.get("href"):
                    link = urljoin(base, link_el["href"])

            author = ""
            if config.author_selector:
                author_el = article.select_one(config.author_selector)
                author = author_el.get_text(strip=True) if author_el else ""

            published = utcnow()
            if config.date_selector:
                date_el = article.select_one(config.date_selector)
                if date_el is not None:
                    published = parse_date(date_el.get("datetime") or date_el.get_text(strip=True))

            key = hashlib.sha1((link or title).encode("utf-8")).hexdigest()[:16]
            posts.append(RawPost(
                id=f"{config.name}-{key}",
                text=f"{title}\n\n{content}"[:MAX_TEXT_LENGTH],
                timestamp=published,
                platform=self.platform,
                author_id=author or config.name,
                author_name=author or None,
                url=link or None,
                metadata={"site": config.name},
            ))

        logger.info(f"Scraped {len(posts)} articles from {config.name}")
        return posts

    async def _search(self, query: str, options: SearchOptions) -> List[RawPost]:
        terms = [t.strip() for t in query.replace(" OR ", " ").split() if t.strip()]
        posts: List[RawPost] = []
        for config in list(self.configs.values()):
            for post in await self.scrape(config):
                if matches_keywords(post.text, terms):
                    posts.append(post)
        posts.sort(key=lambda p: p.timestamp, reverse=True)
        return posts

    async def _fetch_author(self, author_id: str) -> Dict[str, Any]:
        return {
            "name": author_id,
            "credibility_score": 0.5,
            "verification_status": "unverified",
        }

    async def _check_credentials(self) -> bool:
        if not self.configs:
            return False
        config = next(iter(self.configs.values()))
        response = await self.client.get(config.url)
        return response.status_code < 400
