"""Tests for the date-sharded path scheme."""

import datetime as dt

import pytest

from gigboard.entities import NOTIFICATIONS, PROJECTS
from gigboard.errors import InvalidPathError
from gigboard.paths import (
    SLUG_ID,
    derive_path,
    is_hierarchical_path,
    is_legacy_path,
    parse_timestamp,
    split_hierarchical_path,
)


class TestDerivePath:
    def test_zero_pads_month_and_day(self):
        assert derive_path(12, "2025-03-07T10:00:00Z") == "2025/03/07/12"

    def test_uses_utc_day_for_offset_timestamps(self):
        assert derive_path("12", "2025-03-07T23:30:00-02:00") == "2025/03/08/12"

    def test_accepts_dates_and_datetimes(self):
        assert derive_path(5, dt.date(2024, 12, 31)) == "2024/12/31/5"
        assert derive_path(5, dt.datetime(2024, 1, 2, 3, 4)) == "2024/01/02/5"

    def test_is_stable(self):
        stamp = "2025-06-01T08:00:00.123Z"
        assert derive_path(9, stamp) == derive_path(9, stamp)

    def test_rejects_non_numeric_ids_by_default(self):
        with pytest.raises(InvalidPathError):
            derive_path("../etc", "2025-01-01")

    def test_slug_ids_allowed_with_slug_pattern(self):
        assert derive_path("gig_applied_ab12", "2025-01-01", SLUG_ID) == "2025/01/01/gig_applied_ab12"

    def test_unparseable_timestamp(self):
        with pytest.raises(InvalidPathError):
            derive_path(1, "yesterday")
        with pytest.raises(InvalidPathError):
            derive_path(1, None)


class TestValidators:
    @pytest.mark.parametrize(
        "value",
        ["2025/01/02/3", "1999/12/31/100", "2024/02/29/7"],
    )
    def test_valid_hierarchical(self, value):
        assert is_hierarchical_path(value)

    @pytest.mark.parametrize(
        "value",
        [
            "2025/1/02/3",
            "2025/13/02/3",
            "2025/01/32/3",
            "2025/02/31/3",
            "2023/02/29/3",
            "0000/01/01/3",
            "25/01/02/3",
            "2025/01/02/x",
            "2025/01/02",
            "3",
            None,
        ],
    )
    def test_invalid_hierarchical(self, value):
        assert not is_hierarchical_path(value)

    def test_legacy_paths(self):
        assert is_legacy_path("42")
        assert not is_legacy_path("42/43")
        assert not is_legacy_path("..")

    def test_split(self):
        assert split_hierarchical_path("2025/04/09/77") == ("2025", "04", "09", "77")

    def test_parse_timestamp_normalises_to_utc(self):
        parsed = parse_timestamp("2025-01-01T01:00:00+02:00")
        assert parsed.tzinfo == dt.timezone.utc
        assert parsed.hour == 23 and parsed.day == 31


class TestEntityLayout:
    def test_project_id_alias(self):
        assert PROJECTS.entity_id({"id": 4}) == "4"
        assert PROJECTS.entity_id({"projectId": 5, "id": 4}) == "5"
        assert PROJECTS.entity_id({"title": "none"}) is None

    def test_locations(self, tmp_path):
        assert PROJECTS.index_path(tmp_path) == tmp_path / "projects" / "projects-index.json"
        assert PROJECTS.document_path(tmp_path, "2025/01/02/3") == (
            tmp_path / "projects" / "2025" / "01" / "02" / "3" / "project.json"
        )

    def test_notification_layout_accepts_slugs(self):
        assert NOTIFICATIONS.is_hierarchical("2025/01/02/project_created_abc")
        assert not PROJECTS.is_hierarchical("2025/01/02/project_created_abc")
