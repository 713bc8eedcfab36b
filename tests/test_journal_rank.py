import tempfile
import unittest
from collections import Counter
from pathlib import Path
from unittest.mock import MagicMock, patch

from retraction_cem.errors import InputFileError
from retraction_cem.loaders import journal_rank as jr


def _write_rank_file(path: Path, rows) -> None:
    lines = ["Rank;Sourceid;Title;Type;SJR"]
    for rank, title, sjr in rows:
        lines.append(f'{rank};{rank * 7};"{title}";journal;"{sjr}"')
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


class RankPercentileTests(unittest.TestCase):
    def test_equal_frequency_buckets(self) -> None:
        percentiles = jr.rank_percentiles(list(range(1, 201)))
        counts = Counter(percentiles)
        self.assertEqual(len(counts), 100)
        self.assertTrue(all(n == 2 for n in counts.values()))
        self.assertEqual(percentiles[0], 1)
        self.assertEqual(percentiles[-1], 100)

    def test_monotonic_in_rank_not_input_order(self) -> None:
        self.assertEqual(jr.rank_percentiles([3, 1, 2]), [100, 1, 50])

    def test_single_and_empty(self) -> None:
        self.assertEqual(jr.rank_percentiles([5.0]), [1])
        self.assertEqual(jr.rank_percentiles([]), [])


class RankDedupTests(unittest.TestCase):
    def test_ambiguous_group_dropped_entirely(self) -> None:
        records = [
            jr.JournalRankRecord("journal a", 2015, 10),
            jr.JournalRankRecord("journal b", 2015, 20),
            jr.JournalRankRecord("journal a", 2015, 30),
            jr.JournalRankRecord("journal a", 2016, 40),
        ]
        stats = jr.RankLoadStats()
        kept = jr.dedupe_rank_records(records, stats)
        self.assertEqual(
            kept,
            [jr.JournalRankRecord("journal b", 2015, 20), jr.JournalRankRecord("journal a", 2016, 40)],
        )
        self.assertEqual(stats.ambiguous_groups, 1)
        self.assertEqual(stats.ambiguous_rows, 2)

    def test_table_rejects_duplicate_keys(self) -> None:
        with self.assertRaises(ValueError):
            jr.JournalRankTable([jr.JournalRankRecord("x", 2015, 1), jr.JournalRankRecord("x", 2015, 2)])


class LoadJournalRanksTests(unittest.TestCase):
    def test_loads_normalizes_and_dedupes(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            rank_dir = Path(tmpdir)
            _write_rank_file(
                rank_dir / "scimagojr 2015.csv",
                [
                    (1, "The Journal of Foo & Bar (2nd Ed)", "12,5"),
                    (2, "Duplicated Journal", "9,1"),
                    (3, "Bar Letters", "3,0"),
                    (4, "Duplicated Journal", "1,2"),
                ],
            )
            _write_rank_file(rank_dir / "scimagojr 2016.csv", [(1, "Bar Letters", "4,0")])
            (rank_dir / "notes.csv").write_text("Rank;Title;SJR\n1;x;1\n", encoding="utf-8")

            table, stats = jr.load_journal_ranks(rank_dir, delimiter=";")

        self.assertEqual(table.percentile("journal of foo and bar", 2015), 1)
        self.assertEqual(table.percentile("bar letters", 2015), 67)
        self.assertEqual(table.percentile("bar letters", 2016), 1)
        self.assertIsNone(table.percentile("duplicated journal", 2015))
        self.assertIsNone(table.percentile("bar letters", 2017))
        self.assertEqual(stats.files, 2)
        self.assertEqual(stats.years, [2015, 2016])
        self.assertEqual(stats.ambiguous_groups, 1)
        self.assertEqual(len(table), 3)

    def test_year_filter_skips_other_files(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            rank_dir = Path(tmpdir)
            _write_rank_file(rank_dir / "scimagojr 1998.csv", [(1, "Old Journal", "1,0")])
            _write_rank_file(rank_dir / "scimagojr 2001.csv", [(1, "New Journal", "1,0")])
            table, stats = jr.load_journal_ranks(rank_dir, years=range(2000, 2020))
        self.assertEqual(stats.years, [2001])
        self.assertIsNone(table.percentile("old journal", 1998))

    def test_missing_required_column_raises(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "scimagojr 2015.csv"
            path.write_text("Rank;Title\n1;Foo\n", encoding="utf-8")
            with self.assertRaises(InputFileError) as ctx:
                jr.load_journal_ranks(tmpdir)
        self.assertEqual(ctx.exception.missing_columns, ["SJR"])

    def test_unparseable_rank_rows_skipped(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "scimagojr 2015.csv"
            path.write_text("Rank;Title;SJR\n1;Foo;1\n-;Bar;1\n2;;1\n", encoding="utf-8")
            table, stats = jr.load_journal_ranks(tmpdir)
        self.assertEqual(stats.skipped_rows, 2)
        self.assertEqual(table.percentile("foo", 2015), 1)


class FetchRankTablesTests(unittest.TestCase):
    def test_downloads_missing_years_only(self) -> None:
        resp = MagicMock()
        resp.iter_content.return_value = [b"Rank;Title;SJR\n", b"1;Foo;1\n"]
        with tempfile.TemporaryDirectory() as tmpdir:
            rank_dir = Path(tmpdir)
            (rank_dir / "scimagojr 2015.csv").write_text("existing", encoding="utf-8")
            with patch("retraction_cem.loaders.journal_rank.requests.get") as mock_get:
                mock_get.return_value.__enter__.return_value = resp
                out = jr.fetch_rank_tables(
                    [2015, 2016],
                    rank_dir,
                    url_template="https://example.org/ranks?year={year}",
                )
            content = (rank_dir / "scimagojr 2016.csv").read_text(encoding="utf-8")
            existing = (rank_dir / "scimagojr 2015.csv").read_text(encoding="utf-8")

        self.assertEqual(out["downloaded"], [2016])
        self.assertEqual(out["skipped_existing"], [2015])
        self.assertEqual(mock_get.call_count, 1)
        self.assertEqual(mock_get.call_args.args[0], "https://example.org/ranks?year=2016")
        self.assertEqual(content, "Rank;Title;SJR\n1;Foo;1\n")
        self.assertEqual(existing, "existing")

    def test_failed_download_leaves_no_partial_file(self) -> None:
        resp = MagicMock()
        resp.raise_for_status.side_effect = jr.requests.HTTPError("503")
        with tempfile.TemporaryDirectory() as tmpdir:
            rank_dir = Path(tmpdir)
            with patch("retraction_cem.loaders.journal_rank.requests.get") as mock_get:
                mock_get.return_value.__enter__.return_value = resp
                with self.assertRaises(jr.requests.HTTPError):
                    jr.fetch_rank_tables([2016], rank_dir, url_template="https://example.org/{year}")
            self.assertEqual(list(rank_dir.iterdir()), [])


if __name__ == "__main__":
    unittest.main()
