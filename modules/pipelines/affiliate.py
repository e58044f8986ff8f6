"""Try-on affiliate metadata: JSON import/export, Amazon URL helpers, image fetching."""

from __future__ import annotations

import copy
import json
import logging
import mimetypes
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import requests

from modules.pipelines.errors import ValidationError
from modules.utils.image_utils import DEFAULT_MIME_TYPE, ImagePayload, InputItem

logger = logging.getLogger(__name__)

EXPORT_FILENAME = "data.json"
FETCHED_ITEMS = ("clothing", "bag", "shoes")

_PRODUCT_FIELDS = {"image_url": "", "sku": "", "affiliate_url": ""}
DEFAULT_AFFILIATE_CONFIG: Dict[str, Dict[str, str]] = {
    "model": {"image_url": "", "pose name": ""},
    "clothing": dict(_PRODUCT_FIELDS),
    "bag": dict(_PRODUCT_FIELDS),
    "shoes": dict(_PRODUCT_FIELDS),
}

_AMAZON_SIZED_IMAGE = re.compile(r"\._[^._]*_\.(jpg|jpeg|png|webp)(\?.*)?$", re.IGNORECASE)
_AMAZON_PLAIN_IMAGE = re.compile(r"\.(jpg|jpeg|png|webp)(\?.*)?$", re.IGNORECASE)
_AMAZON_SIZE_TOKEN = "._SR800,1200_."
_AMAZON_SKU = re.compile(r"/(?:dp|gp/product)/([A-Z0-9]{10})", re.IGNORECASE)


def default_affiliate_config() -> Dict[str, Dict[str, str]]:
    return copy.deepcopy(DEFAULT_AFFILIATE_CONFIG)


@dataclass(slots=True)
class FetchReport:
    """Images fetched per item plus the URLs that could not be downloaded."""

    items: Dict[str, InputItem] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class AffiliateImport:
    """Result of merging an imported file onto the default layout."""

    config: Dict[str, Dict[str, str]]
    missing_fields: List[str] = field(default_factory=list)
    type_error_fields: List[str] = field(default_factory=list)
    fetch: Optional[FetchReport] = None

    @property
    def needs_fetch(self) -> bool:
        return any(self.config[item]["image_url"] for item in FETCHED_ITEMS)


def parse_affiliate_config(text: str) -> AffiliateImport:
    """Merge JSON ``text`` onto the default config, reporting odd fields.

    Only string values are taken. Non-string values are listed under
    ``type_error_fields``; fields absent from a present item object are
    listed under ``missing_fields``.
    """
    if text.startswith("\ufeff"):
        text = text[1:]
    if not text.strip():
        raise ValidationError("File is empty.")
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Invalid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValidationError("Invalid JSON structure: not an object.")

    report = AffiliateImport(config=default_affiliate_config())
    for item_key, defaults in report.config.items():
        incoming = parsed.get(item_key)
        if not isinstance(incoming, dict):
            continue
        for field_name in defaults:
            path = f"{item_key}.{field_name}"
            if field_name not in incoming:
                report.missing_fields.append(path)
                continue
            value = incoming[field_name]
            if isinstance(value, str):
                defaults[field_name] = value
            elif value is not None:
                report.type_error_fields.append(path)
    return report


def load_affiliate_config(path: Path | str) -> AffiliateImport:
    file_path = Path(path)
    try:
        text = file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ValidationError(f"Error reading file: {file_path.name}") from exc
    return parse_affiliate_config(text)


def export_affiliate_config(config: Dict[str, Dict[str, str]], target_dir: Path | str) -> Path:
    """Write ``config`` as pretty-printed JSON to ``target_dir/data.json``."""
    directory = Path(target_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / EXPORT_FILENAME
    path.write_text(json.dumps(config, indent=2, ensure_ascii=False), encoding="utf-8")
    return path


def normalize_amazon_image_url(url: str) -> str:
    """Ask Amazon's image CDN for an 800x1200 rendition; other hosts pass through."""
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return url
    if "amazon" not in host.lower():
        return url
    if _AMAZON_SIZED_IMAGE.search(url):
        return _AMAZON_SIZED_IMAGE.sub(lambda m: f"{_AMAZON_SIZE_TOKEN}{m.group(1)}{m.group(2) or ''}", url)
    return _AMAZON_PLAIN_IMAGE.sub(lambda m: f"{_AMAZON_SIZE_TOKEN}{m.group(1)}{m.group(2) or ''}", url)


def extract_amazon_sku(url: str) -> Optional[str]:
    """Return the 10-character ASIN from a product link, if there is one."""
    if not url:
        return None
    candidates = []
    try:
        candidates.append(urlparse(url).path)
    except ValueError:
        pass
    candidates.append(url)
    for candidate in candidates:
        match = _AMAZON_SKU.search(candidate)
        if match:
            return match.group(1).upper()
    return None


class AffiliateImageFetcher:
    """Download product images referenced by an affiliate config."""

    def __init__(self, http: Optional[Any] = None, timeout: float = 30.0) -> None:
        self._http = http or requests.Session()
        self.timeout = timeout

    def fetch(self, url: str) -> InputItem:
        try:
            response = self._http.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise ValidationError(f"Failed to fetch image from {url}: {exc}") from exc
        if not response.ok:
            raise ValidationError(f"Failed to fetch image from {url}: HTTP {response.status_code}")

        name = url.split("?", 1)[0].rstrip("/").split("/")[-1] or "fetched-image"
        headers = getattr(response, "headers", None) or {}
        mime_type = (headers.get("Content-Type") or "").split(";", 1)[0].strip()
        if not mime_type.startswith("image/"):
            mime_type = mimetypes.guess_type(name)[0] or DEFAULT_MIME_TYPE
        payload = ImagePayload.from_bytes(response.content, mime_type)
        return InputItem.from_data_url(payload.to_data_url(), name)

    def fetch_all(self, config: Dict[str, Dict[str, str]]) -> FetchReport:
        """Normalize URLs and SKUs in ``config`` in place, then fetch each image.

        A failed download is recorded and the remaining items are still fetched.
        """
        report = FetchReport()
        targets = []
        for item_key in FETCHED_ITEMS:
            entry = config[item_key]
            raw_url = (entry.get("image_url") or "").strip()
            if raw_url:
                entry["image_url"] = normalize_amazon_image_url(raw_url)
                targets.append((item_key, entry["image_url"]))
            sku = extract_amazon_sku(entry.get("affiliate_url") or "")
            if sku:
                entry["sku"] = sku

        for item_key, url in targets:
            try:
                report.items[item_key] = self.fetch(url)
            except ValidationError as exc:
                logger.warning("Could not fetch %s image: %s", item_key, exc)
                report.errors[item_key] = str(exc)
        return report
