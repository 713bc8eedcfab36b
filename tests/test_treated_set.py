import unittest

from retraction_cem.loaders.journal_rank import JournalRankRecord, JournalRankTable
from retraction_cem.loaders.mentions import SoftwareMention
from retraction_cem.loaders.metadata import ArticleMetadata
from retraction_cem.loaders.retractions import RetractionRecord
from retraction_cem.matching.treated import (
    JoinKeyStrategy,
    TreatedCandidate,
    build_treated_set,
    collect_treated_candidates,
)


def _mention(paper_id: str, set_id: str = "retracted", doi=None, name: str = "SPSS") -> SoftwareMention:
    return SoftwareMention(
        set_id=set_id,
        paper_id=paper_id,
        doi=doi,
        name=name,
        software_id=f"sw-{paper_id}-{name}",
        mention_string=name,
        software_type="software",
        mention_type="usage",
        developer="",
        version="",
        citation="",
        url="",
        host_id="",
        host_name="",
    )


def _candidate(paper_id: str, retraction_journal: str, metadata_journal: str, year: int = 2015) -> TreatedCandidate:
    return TreatedCandidate(
        paper_id=paper_id,
        doi=f"10.1000/{paper_id}",
        year=year,
        domain=("Computer Science",),
        metadata_journal=metadata_journal,
        retraction_journal=retraction_journal,
    )


RANKS = JournalRankTable(
    [
        JournalRankRecord("journal a", 2015, 40),
        JournalRankRecord("journal b", 2015, 55),
    ]
)


class BuildTreatedSetTests(unittest.TestCase):
    def test_primary_key_then_fallback(self) -> None:
        candidates = [
            _candidate("p1", "journal a", "journal a"),
            _candidate("p2", "jounral b", "journal b"),
            _candidate("p3", "unknown", "also unknown"),
            _candidate("p4", "journal a", "journal b"),
        ]
        result = build_treated_set(candidates, RANKS)

        self.assertEqual([r.paper_id for r in result.records], ["p1", "p2", "p4"])
        by_id = {r.paper_id: r for r in result.records}
        self.assertEqual(by_id["p1"].percentile, 40)
        self.assertEqual(by_id["p1"].resolved_by, "retraction_journal")
        self.assertEqual(by_id["p2"].percentile, 55)
        self.assertEqual(by_id["p2"].resolved_by, "metadata_journal")
        # primary key wins even when the fallback would resolve differently
        self.assertEqual(by_id["p4"].percentile, 40)
        self.assertEqual([c.paper_id for c in result.unresolved], ["p3"])
        self.assertEqual(result.resolved_by, {"retraction_journal": 2, "metadata_journal": 1})

    def test_year_is_part_of_the_key(self) -> None:
        result = build_treated_set([_candidate("p1", "journal a", "journal a", year=2016)], RANKS)
        self.assertEqual(result.records, [])
        self.assertEqual(len(result.unresolved), 1)

    def test_each_paper_resolved_once(self) -> None:
        c = _candidate("p1", "journal a", "journal b")
        result = build_treated_set([c, c], RANKS)
        self.assertEqual(len(result.records), 1)

    def test_custom_strategy_order(self) -> None:
        strategies = (
            JoinKeyStrategy("metadata_journal", lambda c: c.metadata_journal),
            JoinKeyStrategy("retraction_journal", lambda c: c.retraction_journal),
        )
        result = build_treated_set([_candidate("p4", "journal a", "journal b")], RANKS, strategies)
        self.assertEqual(result.records[0].percentile, 55)
        self.assertEqual(result.records[0].resolved_by, "metadata_journal")

    def test_record_stratum(self) -> None:
        result = build_treated_set([_candidate("p1", "journal a", "journal a")], RANKS)
        self.assertEqual(result.records[0].stratum, (2015, ("Computer Science",), 40))
        self.assertEqual(result.records[0].doi, "10.1000/p1")


class CollectTreatedCandidatesTests(unittest.TestCase):
    def test_joins_mentions_metadata_and_retractions(self) -> None:
        mentions = [
            _mention("p1", doi=None),
            _mention("p1", doi="10.1000/p1", name="R"),
            _mention("p2", doi="10.1000/p2"),
            _mention("p3", doi="10.1000/p3"),
            _mention("p4", set_id="non-retracted", doi="10.1000/p4"),
            _mention("p5"),
            _mention("p1", doi="10.1000/p1", name="Stata"),
        ]
        metadata = {
            "p1": ArticleMetadata("p1", "journal b", 2015, ("Biology",)),
            "p3": ArticleMetadata("p3", "journal a", 2015, ("Biology",)),
            "p4": ArticleMetadata("p4", "journal a", 2015, ("Biology",)),
            "p5": ArticleMetadata("p5", "journal a", 2015, ("Biology",)),
        }
        retractions = [
            RetractionRecord("10.1000/p1", "journal a", "plagiarism"),
            RetractionRecord("10.1000/p1", "journal a", "duplication"),
            RetractionRecord("10.1000/p2", "journal a", "plagiarism"),
        ]

        candidates, stats = collect_treated_candidates(mentions, metadata, retractions)

        self.assertEqual(len(candidates), 1)
        self.assertEqual(candidates[0].paper_id, "p1")
        self.assertEqual(candidates[0].doi, "10.1000/p1")
        self.assertEqual(candidates[0].retraction_journal, "journal a")
        self.assertEqual(candidates[0].metadata_journal, "journal b")
        self.assertEqual(stats["retracted_papers"], 4)
        self.assertEqual(stats["missing_metadata"], 1)
        self.assertEqual(stats["missing_retraction"], 1)
        self.assertEqual(stats["missing_doi"], 1)


if __name__ == "__main__":
    unittest.main()
