"""
Stored records: the persisted counterparts of the snapshot types.

Each record carries the integer ID assigned by the database. Records are
read-only views; all mutation goes through the merge engine, the download
bookkeeper or the eviction manager.
"""

import sqlite3
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from .types import (
    FeedType,
    ImageResolution,
    ImageType,
    IssueStatus,
    PageType,
    PublicationCycle,
    SectionType,
    StorageType,
    parse_date,
    parse_timestamp,
)


@dataclass
class StoredFileEntry:
    id: int
    name: str
    subdir: Optional[str]
    storage_type: StorageType
    mo_time: Optional[datetime]
    size: int
    stored_size: int
    sha256: str


@dataclass
class StoredImage:
    id: int
    file: StoredFileEntry
    resolution: ImageResolution
    type: ImageType
    alpha: float
    sharable: bool

    @property
    def name(self) -> str:
        return self.file.name


@dataclass
class StoredAuthor:
    id: int
    name: Optional[str]
    photo_id: Optional[int]


@dataclass
class StoredPayload:
    id: int
    issue_id: Optional[int]
    resources_id: Optional[int]
    local_dir: str
    remote_base_url: str
    remote_zip_name: Optional[str]
    bytes_loaded: int
    bytes_total: int
    download_started: Optional[datetime]
    download_stopped: Optional[datetime]

    @property
    def is_complete(self) -> bool:
        return self.bytes_total > 0 and self.bytes_loaded >= self.bytes_total


@dataclass
class StoredResources:
    id: int
    resource_version: int


@dataclass
class StoredArticle:
    id: int
    html_id: Optional[int]
    html_name: Optional[str]
    audio_id: Optional[int]
    title: Optional[str]
    teaser: Optional[str]
    online_link: Optional[str]
    has_bookmark: bool
    last_position: int


@dataclass
class StoredSection:
    id: int
    issue_id: int
    html_id: Optional[int]
    html_name: Optional[str]
    name: str
    extended_title: Optional[str]
    type: SectionType
    nav_button_id: Optional[int]
    position: int


@dataclass
class StoredFrame:
    id: int
    page_id: int
    x1: float
    y1: float
    x2: float
    y2: float
    link: Optional[str]
    article_id: Optional[int]
    position: int


@dataclass
class StoredPage:
    id: int
    issue_id: int
    pdf_id: Optional[int]
    pdf_name: Optional[str]
    facsimile_id: Optional[int]
    title: Optional[str]
    pagina: Optional[str]
    type: PageType
    position: int


@dataclass
class StoredMoment:
    id: int
    issue_id: int
    data: Optional[bytes]
    first_page_id: Optional[int]


@dataclass
class StoredIssue:
    id: int
    feed_id: int
    date: date
    mo_time: Optional[datetime]
    is_weekend: bool
    key: Optional[str]
    base_url: str
    status: IssueStatus
    min_resource_version: int
    zip_name: Optional[str]
    zip_name_pdf: Optional[str]
    is_complete: bool
    is_ovw_complete: bool
    last_article: Optional[int]
    last_section: Optional[int]
    last_page: Optional[int]
    imprint_id: Optional[int]


@dataclass
class StoredFeed:
    id: int
    feeder_id: int
    name: str
    cycle: PublicationCycle
    type: FeedType
    moment_ratio: float
    issue_cnt: int
    first_issue: Optional[date]
    last_issue: Optional[date]
    last_issue_read: Optional[datetime]
    last_updated: Optional[datetime]


@dataclass
class StoredFeeder:
    id: int
    title: str
    timezone: str
    base_url: str
    global_base_url: str
    resource_base_url: str
    auth_token: Optional[str]
    resource_version: int
    last_updated: Optional[datetime]


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------

def file_from_row(row: sqlite3.Row) -> StoredFileEntry:
    return StoredFileEntry(
        id=row["id"],
        name=row["name"],
        subdir=row["subdir"],
        storage_type=StorageType(row["storage_type"]),
        mo_time=parse_timestamp(row["mo_time"]),
        size=row["size"],
        stored_size=row["stored_size"],
        sha256=row["sha256"],
    )


def image_from_row(row: sqlite3.Row, file: StoredFileEntry) -> StoredImage:
    return StoredImage(
        id=row["id"],
        file=file,
        resolution=ImageResolution(row["resolution"]),
        type=ImageType(row["type"]),
        alpha=row["alpha"],
        sharable=bool(row["sharable"]),
    )


def author_from_row(row: sqlite3.Row) -> StoredAuthor:
    return StoredAuthor(id=row["id"], name=row["name"], photo_id=row["photo_id"])


def payload_from_row(row: sqlite3.Row) -> StoredPayload:
    return StoredPayload(
        id=row["id"],
        issue_id=row["issue_id"],
        resources_id=row["resources_id"],
        local_dir=row["local_dir"],
        remote_base_url=row["remote_base_url"],
        remote_zip_name=row["remote_zip_name"],
        bytes_loaded=row["bytes_loaded"],
        bytes_total=row["bytes_total"],
        download_started=parse_timestamp(row["download_started"]),
        download_stopped=parse_timestamp(row["download_stopped"]),
    )


def resources_from_row(row: sqlite3.Row) -> StoredResources:
    return StoredResources(id=row["id"], resource_version=row["resource_version"])


def article_from_row(row: sqlite3.Row) -> StoredArticle:
    """Article rows are selected joined with their html file name."""
    return StoredArticle(
        id=row["id"],
        html_id=row["html_id"],
        html_name=row["html_name"],
        audio_id=row["audio_id"],
        title=row["title"],
        teaser=row["teaser"],
        online_link=row["online_link"],
        has_bookmark=bool(row["has_bookmark"]),
        last_position=row["last_position"],
    )


def section_from_row(row: sqlite3.Row) -> StoredSection:
    return StoredSection(
        id=row["id"],
        issue_id=row["issue_id"],
        html_id=row["html_id"],
        html_name=row["html_name"],
        name=row["name"],
        extended_title=row["extended_title"],
        type=SectionType(row["type"]),
        nav_button_id=row["nav_button_id"],
        position=row["position"],
    )


def frame_from_row(row: sqlite3.Row) -> StoredFrame:
    return StoredFrame(
        id=row["id"],
        page_id=row["page_id"],
        x1=row["x1"],
        y1=row["y1"],
        x2=row["x2"],
        y2=row["y2"],
        link=row["link"],
        article_id=row["article_id"],
        position=row["position"],
    )


def page_from_row(row: sqlite3.Row) -> StoredPage:
    return StoredPage(
        id=row["id"],
        issue_id=row["issue_id"],
        pdf_id=row["pdf_id"],
        pdf_name=row["pdf_name"],
        facsimile_id=row["facsimile_id"],
        title=row["title"],
        pagina=row["pagina"],
        type=PageType(row["type"]),
        position=row["position"],
    )


def moment_from_row(row: sqlite3.Row) -> StoredMoment:
    return StoredMoment(
        id=row["id"],
        issue_id=row["issue_id"],
        data=row["data"],
        first_page_id=row["first_page_id"],
    )


def _index(value: int) -> Optional[int]:
    """Last-read pointers are stored as -1 when unset."""
    return None if value is None or value < 0 else value


def issue_from_row(row: sqlite3.Row) -> StoredIssue:
    return StoredIssue(
        id=row["id"],
        feed_id=row["feed_id"],
        date=parse_date(row["date"]),
        mo_time=parse_timestamp(row["mo_time"]),
        is_weekend=bool(row["is_weekend"]),
        key=row["key"],
        base_url=row["base_url"],
        status=IssueStatus(row["status"]),
        min_resource_version=row["min_resource_version"],
        zip_name=row["zip_name"],
        zip_name_pdf=row["zip_name_pdf"],
        is_complete=bool(row["is_complete"]),
        is_ovw_complete=bool(row["is_ovw_complete"]),
        last_article=_index(row["last_article"]),
        last_section=_index(row["last_section"]),
        last_page=_index(row["last_page"]),
        imprint_id=row["imprint_id"],
    )


def feed_from_row(row: sqlite3.Row) -> StoredFeed:
    return StoredFeed(
        id=row["id"],
        feeder_id=row["feeder_id"],
        name=row["name"],
        cycle=PublicationCycle(row["cycle"]),
        type=FeedType(row["type"]),
        moment_ratio=row["moment_ratio"],
        issue_cnt=row["issue_cnt"],
        first_issue=parse_date(row["first_issue"]),
        last_issue=parse_date(row["last_issue"]),
        last_issue_read=parse_timestamp(row["last_issue_read"]),
        last_updated=parse_timestamp(row["last_updated"]),
    )


def feeder_from_row(row: sqlite3.Row) -> StoredFeeder:
    return StoredFeeder(
        id=row["id"],
        title=row["title"],
        timezone=row["timezone"],
        base_url=row["base_url"],
        global_base_url=row["global_base_url"],
        resource_base_url=row["resource_base_url"],
        auth_token=row["auth_token"],
        resource_version=row["resource_version"],
        last_updated=parse_timestamp(row["last_updated"]),
    )
