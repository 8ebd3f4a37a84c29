"""
Snapshot types for the feed cache.

These are the plain objects a feed query delivers: a Feeder with its Feeds,
Issues, Sections, Articles, Pages and media. They carry no identity of their
own; the merge engine matches them against stored records by their
uniqueness keys (file names, dates, versions).
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional


# Absolute tolerance for matching frame coordinates between snapshots
FRAME_EPSILON = 1e-4


def utc_now() -> str:
    """Current UTC timestamp in canonical format: YYYY-MM-DDTHH:MM:SS.

    All timestamps in the cache are UTC, stored without timezone suffix.
    """
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime for storage, normalizing aware values to UTC."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime("%Y-%m-%dT%H:%M:%S")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back to a naive UTC datetime."""
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00")).replace(tzinfo=None)


def format_date(value: Optional[date]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    return date.fromisoformat(value[:10])


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class StorageType(str, Enum):
    ISSUE = "issue"
    GLOBAL = "global"
    RESOURCE = "resource"
    UNKNOWN = "unknown"


class ImageResolution(str, Enum):
    SMALL = "small"
    NORMAL = "normal"
    HIGH = "high"


class ImageType(str, Enum):
    PICTURE = "picture"
    ADVERTISEMENT = "advertisement"
    FACSIMILE = "facsimile"
    BUTTON = "button"


class IssueStatus(str, Enum):
    REGULAR = "regular"
    DEMO = "demo"
    LOCKED = "locked"
    UNKNOWN = "unknown"


class SectionType(str, Enum):
    ARTICLES = "articles"
    TEXT = "text"
    UNKNOWN = "unknown"


class PageType(str, Enum):
    LEFT = "left"
    RIGHT = "right"
    DOUBLE = "double"
    UNKNOWN = "unknown"


class PublicationCycle(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    UNKNOWN = "unknown"


class FeedType(str, Enum):
    PUBLICATION = "publication"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Files and media
# ---------------------------------------------------------------------------

@dataclass
class FileEntry:
    """A file as announced by the feed: name, size and checksum."""
    name: str
    storage_type: StorageType = StorageType.ISSUE
    mo_time: Optional[datetime] = None
    size: int = 0
    sha256: str = ""


@dataclass
class Image(FileEntry):
    """An image file with display attributes."""
    resolution: ImageResolution = ImageResolution.NORMAL
    type: ImageType = ImageType.PICTURE
    alpha: Optional[float] = None
    sharable: bool = False


@dataclass
class Author:
    name: Optional[str] = None
    photo: Optional[Image] = None

    @property
    def key(self) -> Optional[str]:
        """Uniqueness key: name, else the photo's file name."""
        if self.name:
            return self.name
        return self.photo.name if self.photo else None


@dataclass
class Moment:
    """Cover representation of an issue."""
    images: list[Image] = field(default_factory=list)
    credited_images: list[Image] = field(default_factory=list)
    animation: list[FileEntry] = field(default_factory=list)
    data: Optional[bytes] = None


@dataclass
class Payload:
    """The set of files to download for an issue or resource bundle."""
    local_dir: str
    remote_base_url: str = ""
    remote_zip_name: Optional[str] = None
    files: list[FileEntry] = field(default_factory=list)


@dataclass
class Resources:
    resource_version: int
    payload: Payload


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------

@dataclass
class Article:
    html: Optional[FileEntry]
    title: Optional[str] = None
    teaser: Optional[str] = None
    online_link: Optional[str] = None
    audio: Optional[FileEntry] = None
    images: list[Image] = field(default_factory=list)
    authors: list[Author] = field(default_factory=list)
    has_bookmark: bool = False


@dataclass
class Section:
    name: str
    html: Optional[FileEntry]
    extended_title: Optional[str] = None
    type: SectionType = SectionType.ARTICLES
    nav_button: Optional[Image] = None
    images: list[Image] = field(default_factory=list)
    articles: list[Article] = field(default_factory=list)


@dataclass
class Frame:
    x1: float
    y1: float
    x2: float
    y2: float
    link: Optional[str] = None

    def matches(self, x1: float, y1: float, x2: float, y2: float,
                epsilon: float = FRAME_EPSILON) -> bool:
        """True if all coordinates are within epsilon of the given rectangle."""
        return (abs(self.x1 - x1) < epsilon and abs(self.y1 - y1) < epsilon
                and abs(self.x2 - x2) < epsilon and abs(self.y2 - y2) < epsilon)


@dataclass
class Page:
    pdf: Optional[FileEntry]
    title: Optional[str] = None
    pagina: Optional[str] = None
    type: PageType = PageType.UNKNOWN
    frames: list[Frame] = field(default_factory=list)
    facsimile: Optional[Image] = None


@dataclass
class Issue:
    date: Optional[date]
    moment: Moment = field(default_factory=Moment)
    payload: Optional[Payload] = None
    mo_time: Optional[datetime] = None
    is_weekend: bool = False
    key: Optional[str] = None
    base_url: str = ""
    status: IssueStatus = IssueStatus.REGULAR
    min_resource_version: int = 0
    zip_name: Optional[str] = None
    zip_name_pdf: Optional[str] = None
    imprint: Optional[Article] = None
    sections: list[Section] = field(default_factory=list)
    pages: list[Page] = field(default_factory=list)


@dataclass
class Feed:
    name: str
    cycle: PublicationCycle = PublicationCycle.DAILY
    type: FeedType = FeedType.PUBLICATION
    moment_ratio: float = 0.0
    issue_cnt: int = 0
    first_issue: Optional[date] = None
    last_issue: Optional[date] = None
    last_issue_read: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    issues: list[Issue] = field(default_factory=list)


@dataclass
class Feeder:
    title: str
    timezone: str = "Europe/Berlin"
    base_url: str = ""
    global_base_url: str = ""
    resource_base_url: str = ""
    auth_token: Optional[str] = None
    resource_version: int = 0
    last_updated: Optional[datetime] = None
    feeds: list[Feed] = field(default_factory=list)
    resources: Optional[Resources] = None
