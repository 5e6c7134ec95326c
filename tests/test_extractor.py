import unittest
from datetime import datetime, timedelta, timezone

from classroom_sync.extractor import item_from_card
from classroom_sync.merge import fingerprint
from classroom_sync.models import ItemKind, SubmissionState
from classroom_sync.pages.classroom import course_id_from_url, is_home_url

from tests.fakes import make_course

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
LINK = "https://classroom.google.com/u/0/c/c1/a/a1/details"


class ItemFromCardTest(unittest.TestCase):
    def setUp(self):
        self.course = make_course("c1")

    def test_assignment_card(self):
        lines = [
            "Lab report",
            "Due tomorrow",
            "20 points",
            "Turned in",
            "Posted 2 hours ago",
            "Include graphs for both trials.",
        ]

        item = item_from_card(self.course, LINK, "a", "a1", lines, NOW)

        self.assertEqual(item.key, ("c1", "a1"))
        self.assertEqual(item.kind, ItemKind.ASSIGNMENT)
        self.assertEqual(item.title, "Lab report")
        self.assertEqual(item.due_text, "Due tomorrow")
        self.assertEqual(item.due_at, datetime(2026, 3, 3, 23, 59, 59, tzinfo=timezone.utc))
        self.assertEqual(item.max_points, 20.0)
        self.assertIs(item.submission_state, SubmissionState.TURNED_IN)
        self.assertEqual(item.posted_at, NOW - timedelta(hours=2))
        self.assertEqual(item.description, "Include graphs for both trials.")
        self.assertEqual(item.scraped_at, NOW)
        self.assertEqual(item.fingerprint, fingerprint(item))

    def test_kind_follows_link_type(self):
        for code, kind in (("m", ItemKind.MATERIAL), ("p", ItemKind.ANNOUNCEMENT), ("sa", ItemKind.ASSIGNMENT)):
            with self.subTest(code=code):
                item = item_from_card(self.course, LINK, code, "x1", ["Reading list"], NOW)
                self.assertIs(item.kind, kind)

    def test_late_status(self):
        item = item_from_card(self.course, LINK, "a", "a1", ["Essay", "Turned in late"], NOW)
        self.assertIs(item.submission_state, SubmissionState.LATE)

    def test_unlabelled_lines_become_description(self):
        item = item_from_card(self.course, LINK, "m", "m1", ["Slides", "Week 1", "Week 2"], NOW)
        self.assertEqual(item.description, "Week 1\nWeek 2")
        self.assertIsNone(item.due_at)
        self.assertIs(item.submission_state, SubmissionState.NEW)

    def test_card_markup_kept_with_description(self):
        html = "<div>Slides</div><div>Week <b>1</b></div>"
        described = item_from_card(self.course, LINK, "m", "m1", ["Slides", "Week 1"], NOW, html=html)
        bare = item_from_card(self.course, LINK, "m", "m2", ["Slides"], NOW, html="<div>Slides</div>")

        self.assertEqual(described.description_html, html)
        self.assertEqual(bare.description_html, "")
        self.assertEqual(described.fingerprint, fingerprint(described.model_copy(update={"description_html": ""})))

    def test_navigation_chrome_is_ignored(self):
        for lines in ([], ["Classwork"], ["View all"], ["x"]):
            with self.subTest(lines=lines):
                self.assertIsNone(item_from_card(self.course, LINK, "a", "a1", lines, NOW))


class ClassroomUrlTest(unittest.TestCase):
    def test_course_id_from_url(self):
        self.assertEqual(course_id_from_url("https://classroom.google.com/u/0/c/NjA1MzY"), "NjA1MzY")
        self.assertEqual(course_id_from_url("https://classroom.google.com/u/0/w/NjA1MzY/t/all"), "NjA1MzY")
        self.assertEqual(course_id_from_url(LINK), "c1")
        self.assertIsNone(course_id_from_url("https://classroom.google.com/u/0/"))

    def test_is_home_url(self):
        self.assertTrue(is_home_url("https://classroom.google.com/u/0/"))
        self.assertTrue(is_home_url("https://classroom.google.com/u/1/h"))
        self.assertTrue(is_home_url("https://classroom.google.com/"))
        self.assertFalse(is_home_url("https://classroom.google.com/u/0/c/NjA1MzY"))


if __name__ == "__main__":
    unittest.main()
