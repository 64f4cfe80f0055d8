"""Tests for stable identifiers and content fingerprints."""

from __future__ import annotations

from cal_sync.identity import ALL_DAY_MARKER, content_fingerprint, djb2, stable_id


class TestDjb2:
    def test_empty_string_is_seed(self) -> None:
        assert djb2("") == format(5381, "x")

    def test_known_value(self) -> None:
        # 5381 * 33 + ord("a") = 177670
        assert djb2("a") == format(177670, "x")

    def test_wraps_to_32_bits(self) -> None:
        digest = djb2("x" * 500)
        assert int(digest, 16) <= 0xFFFFFFFF

    def test_lowercase_hex(self) -> None:
        digest = djb2("Call mom")
        assert digest == digest.lower()
        int(digest, 16)


class TestStableId:
    def test_deterministic(self, make_task) -> None:
        """Same record, same ID, across independent constructions."""
        assert stable_id(make_task()) == stable_id(make_task())

    def test_matches_documented_derivation(self, make_task) -> None:
        task = make_task(title="Standup", date="2026-03-10", time="09:00", file_path="a.md")
        assert stable_id(task) == djb2("a.md|Standup|2026-03-10|09:00")

    def test_all_day_uses_marker(self, make_task) -> None:
        task = make_task(time=None, file_path="a.md")
        assert stable_id(task) == djb2(f"a.md|Standup|2026-03-10|{ALL_DAY_MARKER}")

    def test_changes_with_title(self, make_task) -> None:
        assert stable_id(make_task(title="Call mom")) != stable_id(make_task(title="Call mother"))

    def test_changes_with_time(self, make_task) -> None:
        assert stable_id(make_task(time="09:00")) != stable_id(make_task(time="10:00"))

    def test_changes_with_file(self, make_task) -> None:
        assert stable_id(make_task(file_path="a.md")) != stable_id(make_task(file_path="b.md"))

    def test_ignores_line_number(self, make_task) -> None:
        assert stable_id(make_task(line_number=1)) == stable_id(make_task(line_number=40))

    def test_ignores_tags_in_raw_text(self, make_task) -> None:
        assert stable_id(make_task()) == stable_id(make_task(extra="#work"))


class TestContentFingerprint:
    def test_covers_raw_text(self, make_task) -> None:
        assert content_fingerprint(make_task()) != content_fingerprint(make_task(extra="#work"))

    def test_deterministic(self, make_task) -> None:
        assert content_fingerprint(make_task()) == content_fingerprint(make_task())

    def test_is_djb2_of_raw_text(self, make_task) -> None:
        task = make_task()
        assert content_fingerprint(task) == djb2(task.raw_text)
