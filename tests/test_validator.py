# -*- coding: utf-8 -*-
"""
tests/test_validator.py
候选文章校验：日期下限 / 链接形状 / 域名白名单 / 占位图 / 必填字段
"""
import sys
from datetime import datetime, timezone
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from lixie.sources import SourceRegistry
from lixie.validator import ValidationStats, Validator

NOW = datetime(2026, 1, 10, 8, 30, tzinfo=timezone.utc)

REGISTRY = SourceRegistry({
    "regions": {
        "id": {
            "table": "indonesia",
            "language": "id",
            "allowed_domains": ["detik.com"],
            "sources": [{"name": "Kompas", "url": "https://www.kompas.com", "categories": ["Tekno"]}],
        },
    },
})


def make_validator(**cfg):
    return Validator(REGISTRY, cfg, now_fn=lambda: NOW)


def good(**over):
    c = {
        "title": "Gempa M5,2 guncang Sukabumi",
        "description": "Gempa terasa hingga Jakarta.",
        "summary": "Paragraf satu.\n\nParagraf dua.",
        "source_url": "https://news.detik.com/berita/d-7123456/gempa-sukabumi",
        "source_id": "Detik",
        "category": "politics",
        "language": "id",
        "image_url": "https://akcdn.detik.net.id/community/media/visual/2026/01/09/gempa.jpg",
        "published_at": "2026-01-09T10:00:00Z",
        "hotness_score": 80,
        "is_breaking": True,
        "is_trending": False,
        "views": 10,
        "shares": 2,
        "comments": 0,
    }
    c.update(over)
    return c


def test_accepted_unchanged_except_id_and_aggregated_at():
    v = make_validator()
    cand = good()
    article, reason = v.validate(cand, "id")
    assert reason is None
    assert isinstance(article["id"], int)
    assert article["aggregated_at"] == "2026-01-10T08:30:00+00:00"
    rest = {k: val for k, val in article.items() if k not in ("id", "aggregated_at")}
    assert rest == cand


def test_one_day_before_floor_rejects_date():
    v = make_validator()
    _, reason = v.validate(good(published_at="2025-12-13T00:00:00Z"), "id")
    assert reason == "date"


def test_unparsable_and_missing_date():
    v = make_validator()
    assert v.validate(good(published_at="kemarin sore"), "id")[1] == "date"
    assert v.validate(good(published_at=None), "id")[1] == "date"


def test_accept_undated_stamps_now():
    v = make_validator(accept_undated=True)
    article, reason = v.validate(good(published_at=""), "id")
    assert reason is None
    assert article["published_at"] == "2026-01-10T08:30:00+00:00"


def test_rolling_floor_takes_later_date():
    v = make_validator(max_age_days=3)
    assert v.floor() == datetime(2026, 1, 7, 8, 30, tzinfo=timezone.utc)
    assert v.validate(good(published_at="2026-01-05T00:00:00Z"), "id")[1] == "date"


def test_unknown_domain_rejects_domain():
    v = make_validator()
    _, reason = v.validate(good(source_url="https://notarealnews.fake/x"), "id")
    assert reason == "domain"


def test_source_host_is_allowed_and_subdomains_match():
    v = make_validator()
    assert v.validate(good(source_url="https://tekno.kompas.com/read/2026/01/09/ai"), "id")[1] is None
    # 只是后缀相同不算子域名
    assert v.validate(good(source_url="https://fakedetik.com/berita/1"), "id")[1] == "domain"


def test_bad_url_shapes_reject_url():
    v = make_validator()
    assert v.validate(good(source_url="https://www.detik.com/"), "id")[1] == "url"
    assert v.validate(good(source_url="https://www.detik.com?id=5"), "id")[1] == "url"
    assert v.validate(good(source_url="ftp://www.detik.com/berita/1"), "id")[1] == "url"
    assert v.validate(good(source_url="https://example.com/news/1"), "id")[1] == "url"


def test_missing_title_rejects_fields():
    v = make_validator()
    assert v.validate(good(title="  "), "id")[1] == "fields"
    c = good()
    del c["title"]
    assert v.validate(c, "id")[1] == "fields"


def test_empty_source_url_is_fields_not_url():
    v = make_validator()
    assert v.validate(good(source_url=""), "id")[1] == "fields"


def test_placeholder_images_are_dropped_not_rejected():
    v = make_validator()
    article, reason = v.validate(
        good(image_url="https://via.placeholder.com/600x400", preview_image_url="/img/x.png"), "id"
    )
    assert reason is None
    assert article["image_url"] is None
    assert article["preview_image_url"] is None


def test_ids_are_unique_within_process():
    v = make_validator()
    ids = [v.validate(good(), "id")[0]["id"] for _ in range(3)]
    assert len(set(ids)) == 3
    assert ids == sorted(ids)


def test_filter_batch_counts_reasons():
    v = make_validator()
    batch = [good(), good(published_at="2020-01-01"), good(source_url="https://notarealnews.fake/x"), "junk"]
    articles, stats = v.filter_batch(batch, "id")
    assert len(articles) == 1
    assert isinstance(stats, ValidationStats)
    assert stats.accepted == 1
    assert stats.rejected["date"] == 1
    assert stats.rejected["domain"] == 1
    assert stats.rejected["fields"] == 1
    assert stats.total_rejected == 3
    assert "accepted=1" in str(stats)


def test_check_stored_reports_reason():
    v = make_validator()
    assert v.check_stored(good(), "id") is None
    assert v.check_stored(good(source_url="https://notarealnews.fake/x"), "id") == "domain"
