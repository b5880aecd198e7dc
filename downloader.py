import re
import logging
import asyncio
from pathlib import Path
from typing import Optional

import aiohttp
import yt_dlp

logger = logging.getLogger(__name__)

URL_PATTERN = re.compile(r"https?://\S+")
VALID_URL_PATTERN = re.compile(r"^https?://[\w\-\.]+\.[a-zA-Z]{2,}(/\S*)?$")


class DownloadFailed(Exception):
    """Raised when a URL could not be downloaded"""


def find_url(text: str) -> Optional[str]:
    """Return the first http(s) link in a message, if any"""
    match = URL_PATTERN.search(text or "")
    return match.group(0) if match else None


def is_valid_url(url: str) -> bool:
    """Basic URL validation: http(s) scheme and a dotted host"""
    return VALID_URL_PATTERN.match(url) is not None


def build_ydl_opts(output_dir: str, cookies_path: Optional[str] = None) -> dict:
    ydl_opts = {
        'paths': {'home': output_dir},
        'quiet': True,
        'no_warnings': True,
        'noprogress': True,
        'logger': logging.getLogger("yt_dlp"),
    }
    if cookies_path:
        ydl_opts['cookiefile'] = cookies_path
    return ydl_opts


def _run_ytdlp(url: str, ydl_opts: dict) -> int:
    with yt_dlp.YoutubeDL(ydl_opts) as ydl:
        return ydl.download([url])


async def download_url(url: str, output_dir: str, cookies_path: Optional[str] = None):
    """Download a URL into output_dir with yt-dlp"""
    logger.info(f"Downloading URL: {url}")
    try:
        Path(output_dir).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DownloadFailed(f"Failed to create output directory: {output_dir}") from e

    if cookies_path:
        logger.info(f"Using cookies file: {cookies_path}")

    ydl_opts = build_ydl_opts(output_dir, cookies_path)
    try:
        # YoutubeDL blocks, keep it off the event loop
        retcode = await asyncio.to_thread(_run_ytdlp, url, ydl_opts)
    except yt_dlp.utils.DownloadError as e:
        raise DownloadFailed(f"yt-dlp failed\nError output: {str(e).strip()}") from e

    if retcode:
        raise DownloadFailed(f"yt-dlp failed with status: {retcode}")


async def download_cookies_from_url(url: str, path: str) -> bool:
    """Download a cookies.txt file from a URL"""
    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(url) as response:
                if response.status != 200:
                    logger.error(f"Failed to fetch cookies. Status: {response.status}")
                    return False
                cookies_content = await response.text()
    except (aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError) as e:
        logger.error(f"Error downloading cookies: {e}")
        return False

    cookies_file = Path(path)
    try:
        cookies_file.parent.mkdir(parents=True, exist_ok=True)
        cookies_file.write_text(cookies_content)
    except OSError as e:
        logger.error(f"Error saving cookies to {path}: {e}")
        return False

    logger.info(f"Successfully downloaded cookies to {path}")
    return True
