"""Tests for building snapshots from decoded feed responses."""

import base64
import json
from datetime import date, datetime

import pytest

from feedcache.snapshot import (
    feeder_from_dict,
    file_entry_from_dict,
    issue_from_dict,
    load_snapshot,
    resources_from_dict,
)
from feedcache.types import (
    ImageType,
    IssueStatus,
    PageType,
    PublicationCycle,
    SectionType,
    StorageType,
)

ISSUE = {
    "date": "2024-01-10",
    "mo_time": 1704866400,
    "status": "regular",
    "moment": {
        "images": [{"name": "moment.jpg", "size": 10}],
        "animation": [{"name": "a1.png"}],
        "data": base64.b64encode(b"\x89PNG").decode(),
    },
    "imprint": {"html": {"name": "imprint.html"}, "title": "Imprint"},
    "sections": [{
        "name": "Politics",
        "type": "articles",
        "html": {"name": "sec1.html", "sha256": "ab" * 32, "size": 120},
        "articles": [{
            "html": {"name": "art1.html"},
            "title": "First",
            "authors": [{"name": "Alice", "photo": {"name": "alice.jpg"}}],
            "images": [{"name": "img.jpg", "type": "advertisement"}],
        }],
    }],
    "pages": [{
        "pdf": {"name": "page1.pdf"},
        "pagina": "1",
        "type": "right",
        "frames": [{"x1": 0.1, "y1": 0.2, "x2": 0.3, "y2": 0.4, "link": "art1.html"}],
    }],
    "payload": {
        "local_dir": "issue-2024-01-10",
        "files": [{"name": "sec1.html"}, {"name": "global.css", "storage_type": "global"}],
    },
}

FEEDER = {
    "title": "Test Feeder",
    "base_url": "https://example.com/",
    "last_updated": "2024-01-10T05:00:00Z",
    "resources": {
        "resource_version": 4,
        "payload": {"local_dir": "resources", "files": [{"name": "app.js"}]},
    },
    "feeds": [{"name": "daily", "cycle": "daily", "issues": [ISSUE]}],
}


class TestSnapshotLoading:

    def test_issue(self):
        issue = issue_from_dict(ISSUE)
        assert issue.date == date(2024, 1, 10)
        assert issue.mo_time.tzinfo is not None
        assert issue.status == IssueStatus.REGULAR
        assert issue.moment.data == b"\x89PNG"
        assert issue.imprint.title == "Imprint"

        section = issue.sections[0]
        assert section.type == SectionType.ARTICLES
        assert section.html.size == 120
        article = section.articles[0]
        assert article.authors[0].photo.name == "alice.jpg"
        assert article.images[0].type == ImageType.ADVERTISEMENT

        page = issue.pages[0]
        assert page.type == PageType.RIGHT
        assert page.frames[0].link == "art1.html"
        assert issue.payload.files[1].storage_type == StorageType.GLOBAL

    def test_feeder(self):
        feeder = feeder_from_dict(FEEDER)
        assert feeder.title == "Test Feeder"
        assert feeder.last_updated == datetime.fromisoformat("2024-01-10T05:00:00+00:00")
        assert feeder.resources.resource_version == 4
        feed = feeder.feeds[0]
        assert feed.cycle == PublicationCycle.DAILY
        assert len(feed.issues) == 1

    def test_unknown_enum_values(self):
        issue = issue_from_dict({"date": "2024-01-10", "status": "archived",
                                 "pages": [{"pdf": {"name": "p.pdf"}, "type": "folded"}]})
        assert issue.status == IssueStatus.UNKNOWN
        assert issue.pages[0].type == PageType.UNKNOWN

    def test_missing_optional_parts(self):
        issue = issue_from_dict({"date": None})
        assert issue.date is None
        assert issue.payload is None
        assert issue.sections == []
        assert issue.moment.images == []

    def test_file_without_name(self):
        with pytest.raises(ValueError):
            file_entry_from_dict({"size": 3})
        assert file_entry_from_dict(None) is None

    def test_feeder_without_title(self):
        with pytest.raises(ValueError):
            feeder_from_dict({"feeds": []})

    def test_resources(self):
        res = resources_from_dict({"resource_version": "2"})
        assert res.resource_version == 2
        assert res.payload.files == []

    def test_load_and_merge(self, tmp_path, cache):
        path = tmp_path / "feeder.json"
        path.write_text(json.dumps(FEEDER))
        feeder = cache.merge_feeder(load_snapshot(path))
        assert cache.last_report.ok
        feed = cache.feed(feeder, "daily")
        issue = cache.latest_issue(feed)
        frames = cache.frames(cache.pages(issue)[0])
        assert cache.article_for_frame(frames[0]).title == "First"
        assert cache.moment(issue).data == b"\x89PNG"
        assert cache.latest_resources().resource_version == 4
