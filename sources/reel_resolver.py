import http.client
import logging
import re
import urllib.error
import urllib.request
from typing import Any

import yt_dlp

from pipeline.errors import InvalidReelUrl, ReelError, ReelNotFound, ReelRateLimited

logger = logging.getLogger(__name__)

REEL_URL_PATTERN = re.compile(r"^https://(?:www\.)?instagram\.com/reels?/[\w-]+")
REEL_ID_PATTERN = re.compile(r"/reels?/([^/?#]+)")
RATE_LIMIT_MARKERS = ("rate limit", "rate-limit", "too many requests")


def validate_reel_url(url: str) -> bool:
    return bool(REEL_URL_PATTERN.match((url or "").strip()))


def extract_reel_id(url: str) -> str:
    match = REEL_ID_PATTERN.search(url or "")
    if not match:
        raise InvalidReelUrl(f"Not an Instagram reel URL: {url}")
    return match.group(1)


def clean_reel_url(url: str) -> str:
    return url.strip().split("?", 1)[0].split("#", 1)[0]


class ReelResolver:
    def __init__(
        self,
        request_timeout: float = 30.0,
        max_download_bytes: int = 200 * 1024 * 1024,
        ydl_factory: Any = None,
    ):
        self.request_timeout = request_timeout
        self.max_download_bytes = max_download_bytes
        self._ydl_factory = ydl_factory or yt_dlp.YoutubeDL

    def resolve(self, url: str) -> str:
        """Return a direct media URL for an Instagram reel page URL."""
        if not validate_reel_url(url):
            raise InvalidReelUrl(f"Not an Instagram reel URL: {url}")

        clean_url = clean_reel_url(url)
        ydl_opts = {
            "format": "best[ext=mp4]/best",
            "quiet": True,
            "no_warnings": True,
            "skip_download": True,
            "noplaylist": True,
        }

        try:
            with self._ydl_factory(ydl_opts) as ydl:
                info = ydl.extract_info(clean_url, download=False)
        except yt_dlp.utils.DownloadError as exc:
            message = str(exc)
            lowered = message.lower()
            if "429" in message or any(marker in lowered for marker in RATE_LIMIT_MARKERS):
                raise ReelRateLimited("Instagram rate limit reached", detail=message) from exc
            raise ReelNotFound("Reel could not be resolved", detail=message) from exc

        media_url = self._pick_media_url(info or {})
        if not media_url:
            raise ReelNotFound(f"No video URL found for {clean_url}")

        logger.info("Resolved reel %s", clean_url)
        return media_url

    def download(self, media_url: str) -> tuple[bytes, str]:
        """Fetch the media bytes. Returns (data, content_type)."""
        req = urllib.request.Request(
            media_url,
            headers={"Accept": "video/mp4,video/webm,video/*"},
            method="GET",
        )

        try:
            with urllib.request.urlopen(req, timeout=self.request_timeout) as resp:
                content_type = resp.headers.get("Content-Type") or "video/mp4"
                data = resp.read(self.max_download_bytes + 1)
        except urllib.error.HTTPError as exc:
            if exc.code == 429:
                raise ReelRateLimited("Media host rate limit reached", detail=str(exc)) from exc
            raise ReelNotFound("Reel video could not be downloaded", detail=str(exc)) from exc
        except urllib.error.URLError as exc:
            raise ReelError("Reel video could not be downloaded", detail=str(exc.reason)) from exc
        except (http.client.HTTPException, ConnectionError, OSError) as exc:
            raise ReelError("Reel video could not be downloaded", detail=repr(exc)) from exc

        if len(data) > self.max_download_bytes:
            raise ReelError(f"Reel video exceeds {self.max_download_bytes} bytes")
        if not data:
            raise ReelNotFound("Reel video download was empty")

        return data, content_type.split(";", 1)[0].strip()

    @staticmethod
    def _pick_media_url(info: dict[str, Any]) -> str | None:
        url = info.get("url")
        if url:
            return str(url)

        for key in ("requested_downloads", "requested_formats", "formats"):
            rows = info.get(key) or []
            candidates = [row for row in rows if row.get("url") and row.get("vcodec") != "none"]
            if not candidates:
                candidates = [row for row in rows if row.get("url")]
            if candidates:
                return str(candidates[-1]["url"])

        entries = info.get("entries") or []
        for entry in entries:
            found = ReelResolver._pick_media_url(entry or {})
            if found:
                return found
        return None
