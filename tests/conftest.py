"""
Shared pytest fixtures for feedcache tests.

Provides snapshot builders with deterministic file contents, so tests can
place "downloaded" files on disk whose checksums match the snapshot.
"""

import hashlib
from datetime import date, datetime, timezone
from typing import Optional

import pytest

from feedcache.api import ArticleCache
from feedcache.blob_store import subdir_for
from feedcache.types import (
    Article,
    Author,
    Feed,
    Feeder,
    FileEntry,
    Frame,
    Image,
    ImageType,
    Issue,
    Moment,
    Page,
    Payload,
    Resources,
    Section,
    StorageType,
)

FEEDER_TITLE = "Test Feeder"
FEED_NAME = "daily"
GLOBAL_FILE = "global.css"


def content_of(name: str) -> bytes:
    """Deterministic file content for a file name."""
    return f"content of {name}\n".encode()


def make_file(name: str, storage_type: StorageType = StorageType.ISSUE) -> FileEntry:
    data = content_of(name)
    return FileEntry(
        name=name,
        storage_type=storage_type,
        mo_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
        size=len(data),
        sha256=hashlib.sha256(data).hexdigest(),
    )


def make_image(name: str, image_type: ImageType = ImageType.PICTURE) -> Image:
    f = make_file(name)
    return Image(name=f.name, mo_time=f.mo_time, size=f.size, sha256=f.sha256,
                 type=image_type)


def _collect_files(issue: Issue) -> list[FileEntry]:
    """Every file an issue's snapshot mentions, first occurrence order."""
    found: dict[str, FileEntry] = {}

    def add(f: Optional[FileEntry]):
        if f is not None and f.name not in found:
            found[f.name] = make_file(f.name, f.storage_type)

    def add_article(a: Article):
        add(a.html)
        add(a.audio)
        for img in a.images:
            add(img)
        for au in a.authors:
            add(au.photo)

    for img in issue.moment.images + issue.moment.credited_images:
        add(img)
    for f in issue.moment.animation:
        add(f)
    for s in issue.sections:
        add(s.html)
        add(s.nav_button)
        for img in s.images:
            add(img)
        for a in s.articles:
            add_article(a)
    if issue.imprint:
        add_article(issue.imprint)
    for p in issue.pages:
        add(p.pdf)
    return list(found.values())


def with_payload(issue: Issue, extra: tuple[FileEntry, ...] = ()) -> Issue:
    """Set the issue's payload to every file it mentions plus extras."""
    issue.payload = Payload(
        local_dir=f"issue-{issue.date.isoformat()}",
        remote_base_url="https://example.com/issues/",
        files=_collect_files(issue) + list(extra),
    )
    return issue


def make_issue(day: date = date(2024, 1, 10), pages: int = 1) -> Issue:
    """
    An issue with 2 sections, 3 articles, an imprint and `pages` pages.

    Page 1 carries two frames linking the first and third article. All
    file names carry the date, except the shared global stylesheet.
    """
    d = day.isoformat()
    alice = Author(name="Alice", photo=make_image(f"alice-{d}.jpg"))
    bob = Author(name="Bob")
    art1 = Article(html=make_file(f"art1-{d}.html"), title="First", authors=[alice])
    art2 = Article(html=make_file(f"art2-{d}.html"), title="Second",
                   images=[make_image(f"art2-img-{d}.jpg")], authors=[bob])
    art3 = Article(html=make_file(f"art3-{d}.html"), title="Third",
                   audio=make_file(f"art3-{d}.mp3"), authors=[alice])
    sec1 = Section(name="Politics", html=make_file(f"sec1-{d}.html"), articles=[art1, art2])
    sec2 = Section(name="Culture", html=make_file(f"sec2-{d}.html"), articles=[art3],
                   nav_button=make_image(f"nav-{d}.png", ImageType.BUTTON))
    page_list = [
        Page(pdf=make_file(f"page1-{d}.pdf"), pagina="1", frames=[
            Frame(0.1, 0.1, 0.5, 0.5, link=f"art1-{d}.html"),
            Frame(0.5, 0.5, 0.9, 0.9, link=f"art3-{d}.html"),
        ])
    ]
    for n in range(2, pages + 1):
        page_list.append(Page(pdf=make_file(f"page{n}-{d}.pdf"), pagina=str(n)))
    issue = Issue(
        date=day,
        moment=Moment(images=[make_image(f"moment-{d}.jpg")],
                      credited_images=[make_image(f"moment-credit-{d}.jpg")],
                      animation=[make_file(f"anim1-{d}.png"), make_file(f"anim2-{d}.png")]),
        mo_time=datetime(2024, 1, 1, 6, 0, tzinfo=timezone.utc),
        imprint=Article(html=make_file(f"imprint-{d}.html"), title="Imprint"),
        sections=[sec1, sec2],
        pages=page_list,
    )
    return with_payload(issue, (make_file(GLOBAL_FILE, StorageType.GLOBAL),))


def make_feeder(*issues: Issue, resources: Optional[Resources] = None) -> Feeder:
    if not issues:
        issues = (make_issue(),)
    return Feeder(
        title=FEEDER_TITLE,
        base_url="https://example.com/",
        last_updated=datetime(2024, 1, 10, 5, 0, tzinfo=timezone.utc),
        feeds=[Feed(name=FEED_NAME, issues=list(issues))],
        resources=resources,
    )


def make_resources(version: int, *names: str) -> Resources:
    return Resources(
        resource_version=version,
        payload=Payload(local_dir="resources",
                        files=[make_file(n, StorageType.RESOURCE) for n in names]),
    )


def write_payload_files(cache: ArticleCache, payload: Payload,
                        skip: tuple[str, ...] = ()) -> None:
    """Place a payload's files on disk as a downloader would."""
    for f in payload.files:
        if f.name in skip:
            continue
        path = cache.blobs.root / subdir_for(f.storage_type, payload.local_dir) / f.name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content_of(f.name))


def dump_tables(cache: ArticleCache) -> dict[str, list[tuple]]:
    """All rows of all tables, sorted, for whole-state comparisons."""
    db = cache._db
    tables = [r[0] for r in db.query(
        "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
    )]
    return {t: sorted((tuple(row) for row in db.query(f"SELECT * FROM {t}")), key=repr)
            for t in tables}


@pytest.fixture
def cache(tmp_path):
    """A fresh cache store in a temporary directory."""
    c = ArticleCache(tmp_path / "store")
    yield c
    c.close()


@pytest.fixture
def merged(cache):
    """Cache with one merged feeder; returns (cache, feed, issue snapshot)."""
    issue = make_issue()
    feeder = cache.merge_feeder(make_feeder(issue))
    feed = cache.feed(feeder, FEED_NAME)
    return cache, feed, issue


class SnapshotBuilder:
    """Snapshot builders and store helpers, handed to tests as a fixture."""

    FEEDER_TITLE = FEEDER_TITLE
    FEED_NAME = FEED_NAME
    GLOBAL_FILE = GLOBAL_FILE

    content = staticmethod(content_of)
    file = staticmethod(make_file)
    image = staticmethod(make_image)
    issue = staticmethod(make_issue)
    feeder = staticmethod(make_feeder)
    resources = staticmethod(make_resources)
    with_payload = staticmethod(with_payload)
    write_files = staticmethod(write_payload_files)
    dump = staticmethod(dump_tables)


@pytest.fixture
def snapshots():
    """Builders for feed snapshots with deterministic file contents."""
    return SnapshotBuilder()
