import re
from typing import Iterable, Optional
from urllib.parse import urlparse

IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp", "bmp", "svg", "ico", "tiff", "tif")
VIDEO_EXTENSIONS = ("mp4", "avi", "mov", "wmv", "flv", "webm", "mkv", "m4v", "3gp", "ogv")
FILE_EXTENSIONS = (
    "pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx", "zip", "rar",
    "7z", "tar", "gz", "txt", "csv", "json", "xml", "odt", "ods", "odp",
)

# Narrower lists used when choosing the Send API attachment type.
SEND_VIDEO_EXTENSIONS = ("mp4", "avi", "mov", "wmv", "flv", "webm")
SEND_FILE_EXTENSIONS = ("pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx", "zip", "rar")

MEDIA_DOMAINS = (
    "cloudinary.com",
    "imgur.com",
    "flickr.com",
    "youtube.com",
    "youtu.be",
    "vimeo.com",
    "dailymotion.com",
    "dropbox.com",
    "drive.google.com",
    "onedrive.live.com",
)

URL_PATTERN = re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+", re.IGNORECASE)

_MEDIA_WORDS = r"(?:media|image|photo|video|file|document)"
PLACEHOLDER_PATTERNS = (
    re.compile(rf"\(insert\s+{_MEDIA_WORDS}\s*(?:file)?\s*here\)", re.IGNORECASE),
    re.compile(rf"\[insert\s+{_MEDIA_WORDS}\s*(?:file)?\s*here\]", re.IGNORECASE),
    re.compile(rf"\{{insert\s+{_MEDIA_WORDS}\s*(?:file)?\s*here\}}", re.IGNORECASE),
    re.compile(rf"<insert\s+{_MEDIA_WORDS}\s*(?:file)?\s*here>", re.IGNORECASE),
    re.compile(rf"\(attach\s+{_MEDIA_WORDS}\s*here\)", re.IGNORECASE),
    re.compile(rf"\[attach\s+{_MEDIA_WORDS}\s*here\]", re.IGNORECASE),
    re.compile(rf"\(see\s+attached\s*{_MEDIA_WORDS}?\)", re.IGNORECASE),
    re.compile(rf"\[see\s+attached\s*{_MEDIA_WORDS}?\]", re.IGNORECASE),
)

ORPHAN_EMOJI_PATTERN = re.compile(r"[ \t]+(?:📸|📷|🖼️|🖼|📄|📎)[ \t]*$", re.MULTILINE)


def _extension(url: str) -> str:
    path = url.lower().split("?", 1)[0].split("#", 1)[0]
    if "." not in path.rsplit("/", 1)[-1]:
        return ""
    return path.rsplit(".", 1)[-1]


def is_media_url(url: Optional[str]) -> bool:
    if not url or not isinstance(url, str):
        return False

    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False

    if _extension(url) in IMAGE_EXTENSIONS + VIDEO_EXTENSIONS + FILE_EXTENSIONS:
        return True

    hostname = parsed.hostname or ""
    return any(domain in hostname for domain in MEDIA_DOMAINS)


def extract_urls(text: Optional[str]) -> list[str]:
    if not text:
        return []
    # dict.fromkeys keeps first-seen order while dropping repeats
    return list(dict.fromkeys(URL_PATTERN.findall(text)))


def extract_media_urls(text: Optional[str]) -> list[str]:
    return [url for url in extract_urls(text) if is_media_url(url)]


def get_attachment_type(url: str) -> str:
    """Send API attachment type for a media URL; anything unrecognised goes out as an image."""
    ext = _extension(url)
    if ext in SEND_VIDEO_EXTENSIONS:
        return "video"
    if ext in SEND_FILE_EXTENSIONS:
        return "file"
    return "image"


def strip_media_links_from_text(text: Optional[str], media_urls: Iterable[str] = ()) -> Optional[str]:
    """Remove media URLs from a reply fragment before it is sent as text.

    Markdown links pointing at a media URL disappear entirely, bare occurrences of
    the URL are removed, and when media is attached "insert image here" style
    placeholders go too. Whitespace left behind is tidied up.
    """
    if not text or not isinstance(text, str):
        return text

    media_urls = [url for url in media_urls if url]
    urls_to_strip = list(dict.fromkeys(media_urls + extract_media_urls(text)))
    # Longest first so a URL that prefixes another one never leaves a tail behind.
    urls_to_strip.sort(key=len, reverse=True)

    result = text
    for url in urls_to_strip:
        escaped = re.escape(url)
        result = re.sub(rf"\[[^\]]*?\]\({escaped}\)\s*", "", result, flags=re.IGNORECASE)
        result = re.sub(rf"{escaped}[ \t]*", "", result, flags=re.IGNORECASE)

    if media_urls:
        for pattern in PLACEHOLDER_PATTERNS:
            result = pattern.sub("", result)

    result = ORPHAN_EMOJI_PATTERN.sub("", result)
    result = re.sub(r" {2,}", " ", result)
    lines = [line.strip() for line in result.split("\n")]
    return "\n".join(line for line in lines if line).strip()
