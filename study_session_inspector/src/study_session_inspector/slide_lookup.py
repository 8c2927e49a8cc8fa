"""Resolve raw slide ids and titles from telemetry to catalog slide keys."""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple

from study_session_inspector.models import is_page_key

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_title_key(value: str) -> str:
    """'Intro: What is AI?' -> 'intro-what-is-ai'"""
    return _NON_ALNUM.sub("-", value.strip().lower()).strip("-")


@dataclass
class SlideInfo:
    slide_id: str
    title: str


@dataclass
class SlideLookup:
    by_id: Dict[str, SlideInfo] = field(default_factory=dict)
    by_title: Dict[str, SlideInfo] = field(default_factory=dict)

    @classmethod
    def from_slides(cls, slides: Iterable[Dict[str, Any]]) -> "SlideLookup":
        lookup = cls()
        for slide in slides:
            slide_id = (slide or {}).get("slide_id")
            if not slide_id:
                continue
            info = SlideInfo(slide_id=slide_id, title=slide.get("title") or slide_id)
            lookup.by_id[slide_id] = info
            title_key = normalize_title_key(info.title)
            # First slide with a given title keeps it
            if title_key and title_key not in lookup.by_title:
                lookup.by_title[title_key] = info
        return lookup

    def __bool__(self) -> bool:
        return bool(self.by_id)

    def __contains__(self, slide_key: str) -> bool:
        return slide_key in self.by_id

    def resolve(self, slide_id: Optional[str], slide_title: Optional[str] = None) -> Tuple[str, str]:
        """
        Map a raw (id, title) pair to (slide_key, display_title).

        Order: page literal, exact id, normalised title, then the normalised
        title (or raw id) itself when the catalog knows neither.
        """
        raw_id = (slide_id or "").strip()
        raw_title = (slide_title or raw_id).strip()

        if is_page_key(raw_id):
            return raw_id, raw_title or raw_id

        if raw_id in self.by_id:
            info = self.by_id[raw_id]
            return info.slide_id, info.title

        title_key = normalize_title_key(raw_title)
        if title_key and title_key in self.by_title:
            info = self.by_title[title_key]
            return info.slide_id, info.title

        return title_key or raw_id, raw_title or raw_id
