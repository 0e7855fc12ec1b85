"""Plant-content pre-check backed by the Imagga tagging API."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Sequence, Tuple

import requests

LOGGER = logging.getLogger(__name__)

IMAGGA_TAGS_URL = "https://api.imagga.com/v2/tags"
DEFAULT_ALLOW_LIST: Sequence[str] = ("tree", "leaf", "flower")


class TaggingError(RuntimeError):
    """The tagging service could not be reached or answered with an error."""


@dataclass(frozen=True)
class Tag:
    tag: str
    confidence: float


class Tagger(Protocol):
    def get_tags(self, image_bytes: bytes) -> List[Tag]:
        ...


def parse_imagga_tags(payload: Any) -> List[Tag]:
    """
    Extract `{tag, confidence}` pairs from an Imagga `/v2/tags` response.

    Tag names come from `tag.en` (or the first language present), lower-cased; confidence
    is rescaled from 0-100 to 0-1. Malformed entries are skipped.
    """

    try:
        entries = payload["result"]["tags"]
    except (KeyError, TypeError):
        return []
    if not isinstance(entries, list):
        return []

    tags: List[Tag] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        raw = entry.get("tag")
        if isinstance(raw, dict):
            name = raw.get("en") or next(iter(raw.values()), None)
        else:
            name = raw
        if name is None:
            continue
        score = entry.get("confidence")
        confidence = float(score) / 100.0 if isinstance(score, (int, float)) and not isinstance(score, bool) else 0.0
        tags.append(Tag(tag=str(name).lower(), confidence=confidence))
    return tags


class ImaggaTagger:
    """Uploads the image to Imagga and returns its tags."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        *,
        url: str = IMAGGA_TAGS_URL,
        timeout_s: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.timeout_s = timeout_s
        self._auth = (api_key, api_secret)
        self._session = session or requests.Session()

    def get_tags(self, image_bytes: bytes) -> List[Tag]:
        try:
            response = self._session.post(
                self.url,
                files={"image": ("image.jpg", image_bytes, "image/jpeg")},
                auth=self._auth,
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            raise TaggingError(f"Imagga request failed: {exc}") from exc

        if response.status_code not in (200, 201):
            raise TaggingError(f"Imagga API error: {response.status_code} {response.reason}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise TaggingError("Imagga returned a non-JSON body") from exc
        return parse_imagga_tags(payload)


def has_allowed_tag(tags: Sequence[Tag], allow_list: Sequence[str] = DEFAULT_ALLOW_LIST) -> bool:
    return any(term in t.tag for t in tags for term in allow_list)


@dataclass(frozen=True)
class GateResult:
    passed: bool
    tags: Tuple[Tag, ...] = ()
    # Set when the tagger failed and the gate passed by default.
    error: Optional[str] = None


class TagGate:
    """
    Skips detection for images the tagger does not see as plants.

    Without a tagger, or when tagging fails for any reason, the gate lets the image through.
    """

    def __init__(self, tagger: Optional[Tagger] = None, allow_list: Sequence[str] = DEFAULT_ALLOW_LIST) -> None:
        self.tagger = tagger
        self.allow_list = tuple(term.lower() for term in allow_list)

    def check(self, image_bytes: bytes) -> GateResult:
        if self.tagger is None:
            return GateResult(passed=True)
        try:
            tags = tuple(self.tagger.get_tags(image_bytes))
        except Exception as exc:
            LOGGER.warning("Tag check failed: %s. Proceeding to local model.", exc)
            return GateResult(passed=True, error=str(exc))

        passed = has_allowed_tag(tags, self.allow_list)
        if not passed:
            LOGGER.info("No tag matches %s; skipping species detection", list(self.allow_list))
        return GateResult(passed=passed, tags=tags)

    def allows(self, image_bytes: bytes) -> bool:
        return self.check(image_bytes).passed
