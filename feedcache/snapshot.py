"""
Build snapshot objects from decoded feed responses.

The transport layer hands over plain dicts (decoded JSON). Keys follow the
snapshot dataclass field names. Timestamps may be ISO strings or epoch
seconds; moment bytes are base64. Unknown enum values map to the enum's
"unknown" member where it has one.
"""

import base64
import json
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional, TypeVar

from .types import (
    Article,
    Author,
    Feed,
    Feeder,
    FeedType,
    FileEntry,
    Frame,
    Image,
    ImageResolution,
    ImageType,
    Issue,
    IssueStatus,
    Moment,
    Page,
    PageType,
    Payload,
    PublicationCycle,
    Resources,
    Section,
    SectionType,
    StorageType,
    parse_date,
)

E = TypeVar("E", bound=Enum)


def _enum(cls: type[E], value: Any, default: E) -> E:
    if value is None:
        return default
    try:
        return cls(value)
    except ValueError:
        unknown = getattr(cls, "UNKNOWN", None)
        if unknown is not None:
            return unknown
        raise


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, timezone.utc)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return parse_date(str(value))


def _name(d: dict, what: str) -> str:
    name = d.get("name")
    if not name:
        raise ValueError(f"{what} without name: {d!r}")
    return name


# ---------------------------------------------------------------------------
# Files and media
# ---------------------------------------------------------------------------

def file_entry_from_dict(d: Optional[dict]) -> Optional[FileEntry]:
    if d is None:
        return None
    return FileEntry(
        name=_name(d, "File"),
        storage_type=_enum(StorageType, d.get("storage_type"), StorageType.ISSUE),
        mo_time=_timestamp(d.get("mo_time")),
        size=int(d.get("size", 0)),
        sha256=d.get("sha256", ""),
    )


def image_from_dict(d: Optional[dict]) -> Optional[Image]:
    if d is None:
        return None
    return Image(
        name=_name(d, "Image"),
        storage_type=_enum(StorageType, d.get("storage_type"), StorageType.ISSUE),
        mo_time=_timestamp(d.get("mo_time")),
        size=int(d.get("size", 0)),
        sha256=d.get("sha256", ""),
        resolution=_enum(ImageResolution, d.get("resolution"), ImageResolution.NORMAL),
        type=_enum(ImageType, d.get("type"), ImageType.PICTURE),
        alpha=d.get("alpha"),
        sharable=bool(d.get("sharable", False)),
    )


def _images(items: Optional[list]) -> list[Image]:
    return [image_from_dict(i) for i in items or []]


def author_from_dict(d: dict) -> Author:
    return Author(name=d.get("name"), photo=image_from_dict(d.get("photo")))


def moment_from_dict(d: Optional[dict]) -> Moment:
    if d is None:
        return Moment()
    data = d.get("data")
    return Moment(
        images=_images(d.get("images")),
        credited_images=_images(d.get("credited_images")),
        animation=[file_entry_from_dict(f) for f in d.get("animation") or []],
        data=base64.b64decode(data) if data else None,
    )


def payload_from_dict(d: Optional[dict]) -> Optional[Payload]:
    if d is None:
        return None
    return Payload(
        local_dir=d.get("local_dir", ""),
        remote_base_url=d.get("remote_base_url", ""),
        remote_zip_name=d.get("remote_zip_name"),
        files=[file_entry_from_dict(f) for f in d.get("files") or []],
    )


def resources_from_dict(d: dict) -> Resources:
    return Resources(
        resource_version=int(d["resource_version"]),
        payload=payload_from_dict(d.get("payload")) or Payload(local_dir="resources"),
    )


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------

def article_from_dict(d: dict) -> Article:
    return Article(
        html=file_entry_from_dict(d.get("html")),
        title=d.get("title"),
        teaser=d.get("teaser"),
        online_link=d.get("online_link"),
        audio=file_entry_from_dict(d.get("audio")),
        images=_images(d.get("images")),
        authors=[author_from_dict(a) for a in d.get("authors") or []],
        has_bookmark=bool(d.get("has_bookmark", False)),
    )


def section_from_dict(d: dict) -> Section:
    return Section(
        name=d.get("name", ""),
        html=file_entry_from_dict(d.get("html")),
        extended_title=d.get("extended_title"),
        type=_enum(SectionType, d.get("type"), SectionType.ARTICLES),
        nav_button=image_from_dict(d.get("nav_button")),
        images=_images(d.get("images")),
        articles=[article_from_dict(a) for a in d.get("articles") or []],
    )


def frame_from_dict(d: dict) -> Frame:
    return Frame(
        x1=float(d["x1"]), y1=float(d["y1"]),
        x2=float(d["x2"]), y2=float(d["y2"]),
        link=d.get("link"),
    )


def page_from_dict(d: dict) -> Page:
    return Page(
        pdf=file_entry_from_dict(d.get("pdf")),
        title=d.get("title"),
        pagina=d.get("pagina"),
        type=_enum(PageType, d.get("type"), PageType.UNKNOWN),
        frames=[frame_from_dict(f) for f in d.get("frames") or []],
        facsimile=image_from_dict(d.get("facsimile")),
    )


def issue_from_dict(d: dict) -> Issue:
    imprint = d.get("imprint")
    return Issue(
        date=_date(d.get("date")),
        moment=moment_from_dict(d.get("moment")),
        payload=payload_from_dict(d.get("payload")),
        mo_time=_timestamp(d.get("mo_time")),
        is_weekend=bool(d.get("is_weekend", False)),
        key=d.get("key"),
        base_url=d.get("base_url", ""),
        status=_enum(IssueStatus, d.get("status"), IssueStatus.REGULAR),
        min_resource_version=int(d.get("min_resource_version", 0)),
        zip_name=d.get("zip_name"),
        zip_name_pdf=d.get("zip_name_pdf"),
        imprint=article_from_dict(imprint) if imprint else None,
        sections=[section_from_dict(s) for s in d.get("sections") or []],
        pages=[page_from_dict(p) for p in d.get("pages") or []],
    )


def feed_from_dict(d: dict) -> Feed:
    return Feed(
        name=_name(d, "Feed"),
        cycle=_enum(PublicationCycle, d.get("cycle"), PublicationCycle.DAILY),
        type=_enum(FeedType, d.get("type"), FeedType.PUBLICATION),
        moment_ratio=float(d.get("moment_ratio", 0.0)),
        issue_cnt=int(d.get("issue_cnt", 0)),
        first_issue=_date(d.get("first_issue")),
        last_issue=_date(d.get("last_issue")),
        last_issue_read=_timestamp(d.get("last_issue_read")),
        last_updated=_timestamp(d.get("last_updated")),
        issues=[issue_from_dict(i) for i in d.get("issues") or []],
    )


def feeder_from_dict(d: dict) -> Feeder:
    title = d.get("title")
    if not title:
        raise ValueError("Feeder without title")
    resources = d.get("resources")
    return Feeder(
        title=title,
        timezone=d.get("timezone", "Europe/Berlin"),
        base_url=d.get("base_url", ""),
        global_base_url=d.get("global_base_url", ""),
        resource_base_url=d.get("resource_base_url", ""),
        auth_token=d.get("auth_token"),
        resource_version=int(d.get("resource_version", 0)),
        last_updated=_timestamp(d.get("last_updated")),
        feeds=[feed_from_dict(f) for f in d.get("feeds") or []],
        resources=resources_from_dict(resources) if resources else None,
    )


def load_snapshot(path: Path) -> Feeder:
    """Read a feeder snapshot from a JSON file."""
    with open(path, encoding="utf-8") as f:
        return feeder_from_dict(json.load(f))
