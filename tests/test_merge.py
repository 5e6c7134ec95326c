import unittest

from classroom_sync.merge import (
    content_changed,
    count_by_kind,
    dedupe_items,
    merge_courses,
    merge_items,
)
from classroom_sync.models import ChangeSummary, ItemKind

from tests.fakes import T0, at, make_course, make_item


def dumped(items):
    return sorted((item.model_dump() for item in items), key=lambda d: (d["course_id"], d["id"]))


class MergeItemsTest(unittest.TestCase):
    def test_unknown_keys_are_added(self):
        merged = merge_items([], [make_item("c1", "a1"), make_item("c1", "a2")])
        self.assertEqual(len(merged.items), 2)
        self.assertEqual(merged.changes, ChangeSummary(added=2))

    def test_edited_title_counts_as_updated(self):
        existing = [make_item("c1", "a1", title="Essay", scraped_at=T0)]
        incoming = [make_item("c1", "a1", title="Essay v2", scraped_at=at(60))]

        merged = merge_items(existing, incoming)

        self.assertEqual(merged.changes, ChangeSummary(added=0, updated=1, unchanged=0))
        self.assertEqual([item.title for item in merged.items], ["Essay v2"])

    def test_rescrape_without_edit_is_unchanged(self):
        existing = [make_item("c1", "a1", scraped_at=T0)]
        incoming = [make_item("c1", "a1", scraped_at=at(60))]

        merged = merge_items(existing, incoming)

        self.assertEqual(merged.changes, ChangeSummary(unchanged=1))
        self.assertEqual(merged.items[0].scraped_at, at(60))

    def test_merging_the_same_payload_twice_is_a_no_op(self):
        snapshot = [make_item("c1", "a1", scraped_at=T0), make_item("c2", "a9", scraped_at=T0)]
        payload = [
            make_item("c1", "a1", title="Essay v2", description="", scraped_at=at(10)),
            make_item("c1", "a2", scraped_at=at(10)),
        ]

        once = merge_items(snapshot, payload)
        twice = merge_items(once.items, payload)

        self.assertEqual(dumped(once.items), dumped(twice.items))
        self.assertEqual(twice.changes, ChangeSummary(unchanged=2))

    def test_payload_without_fingerprints_merges_idempotently(self):
        snapshot = [make_item("c1", "a1", description="Read chapter 4", scraped_at=T0, stamp=False)]
        payload = [make_item("c1", "a1", description="", scraped_at=at(10), stamp=False)]

        once = merge_items(snapshot, payload)
        twice = merge_items(once.items, payload)

        self.assertEqual(once.changes, ChangeSummary(unchanged=1))
        self.assertEqual(twice.changes, ChangeSummary(unchanged=1))
        self.assertEqual(dumped(once.items), dumped(twice.items))
        self.assertEqual(twice.items[0].description, "Read chapter 4")

    def test_partial_scrape_without_fingerprint_still_sees_edits(self):
        stored = [make_item("c1", "a1", description="Read chapter 4", scraped_at=T0, stamp=False)]
        edited = [make_item("c1", "a1", title="Reading", description="", scraped_at=at(10), stamp=False)]

        merged = merge_items(stored, edited)

        self.assertEqual(merged.changes, ChangeSummary(updated=1))
        self.assertEqual(merged.items[0].title, "Reading")

    def test_later_scrape_wins_regardless_of_arrival_order(self):
        older = make_item("c1", "a1", title="Draft", scraped_at=T0)
        newer = make_item("c1", "a1", title="Final", scraped_at=at(5))

        forward = merge_items([], [older, newer])
        backward = merge_items([], [newer, older])

        self.assertEqual([item.title for item in forward.items], ["Final"])
        self.assertEqual(dumped(forward.items), dumped(backward.items))

    def test_late_older_scrape_counts_as_unchanged(self):
        stored = [make_item("c1", "a1", title="Final", scraped_at=at(5))]
        late = [make_item("c1", "a1", title="Draft", scraped_at=T0)]

        merged = merge_items(stored, late)

        self.assertEqual(merged.changes, ChangeSummary(unchanged=1))
        self.assertEqual(merged.items[0].title, "Final")

    def test_partial_extraction_keeps_known_fields(self):
        stored = [make_item("c1", "a1", description="Read chapter 4", posted_at=at(-120), scraped_at=T0)]
        partial = [make_item("c1", "a1", description="", posted_at=None, scraped_at=at(60))]

        merged = merge_items(stored, partial).items[0]

        self.assertEqual(merged.description, "Read chapter 4")
        self.assertEqual(merged.posted_at, at(-120))
        self.assertEqual(merged.scraped_at, at(60))

    def test_partial_extraction_keeps_known_markup(self):
        stored = [
            make_item("c1", "a1", scraped_at=T0).model_copy(update={"description_html": "<p>Read <b>chapter 4</b></p>"})
        ]
        partial = [make_item("c1", "a1", scraped_at=at(60))]

        merged = merge_items(stored, partial).items[0]

        self.assertEqual(merged.description_html, "<p>Read <b>chapter 4</b></p>")

    def test_same_item_id_in_two_courses_is_two_records(self):
        merged = merge_items([], [make_item("c1", "a1"), make_item("c2", "a1")])
        self.assertEqual(len(merged.items), 2)

    def test_keeps_first_seen_order(self):
        existing = [make_item("c1", "a1"), make_item("c1", "a2")]
        merged = merge_items(existing, [make_item("c1", "a3"), make_item("c1", "a1", scraped_at=at(1))])
        self.assertEqual([item.id for item in merged.items], ["a1", "a2", "a3"])


class ContentChangedTest(unittest.TestCase):
    def test_uses_fingerprints_when_both_have_one(self):
        a = make_item("c1", "a1").model_copy(update={"fingerprint": "same"})
        b = make_item("c1", "a1", title="Other").model_copy(update={"fingerprint": "same"})
        self.assertFalse(content_changed(a, b))

    def test_falls_back_to_fields_without_fingerprint(self):
        a = make_item("c1", "a1", stamp=False)
        self.assertFalse(content_changed(a, make_item("c1", "a1", stamp=False)))
        self.assertTrue(content_changed(a, make_item("c1", "a1", max_points=5, stamp=False)))
        self.assertTrue(content_changed(a, make_item("c1", "a1", title="Quiz")))


class DedupeItemsTest(unittest.TestCase):
    def test_keeps_latest_scrape_per_key(self):
        items = [
            make_item("c1", "a1", title="Draft", scraped_at=T0),
            make_item("c1", "a2", scraped_at=T0),
            make_item("c1", "a1", title="Final", scraped_at=at(3)),
        ]

        unique = dedupe_items(items)

        self.assertEqual([(item.id, item.title) for item in unique], [("a1", "Final"), ("a2", "Essay")])


class MergeCoursesTest(unittest.TestCase):
    def test_overwrites_by_id(self):
        renamed = make_course("c1").model_copy(update={"name": "Physics (new)"})
        courses = merge_courses([make_course("c1"), make_course("c2")], [renamed, make_course("c3")])

        self.assertEqual([course.id for course in courses], ["c1", "c2", "c3"])
        self.assertEqual(courses[0].name, "Physics (new)")


class CountByKindTest(unittest.TestCase):
    def test_reports_every_kind(self):
        items = [
            make_item("c1", "a1"),
            make_item("c1", "m1", kind=ItemKind.MATERIAL),
            make_item("c1", "a2"),
        ]
        self.assertEqual(count_by_kind(items), {"assignment": 2, "material": 1, "announcement": 0})


if __name__ == "__main__":
    unittest.main()
