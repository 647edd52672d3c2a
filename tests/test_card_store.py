import json
from pathlib import Path

import pytest
import requests

from card_details import CardRecord
from card_store import (
    SnapshotLedger,
    combine_sets,
    download_image,
    download_images,
    image_path_for,
    read_snapshot_cards,
    sanitize_filename,
    summarize_cards,
)


class FakeResponse:
    def __init__(self, status: int = 200, body: bytes = b"jpegdata"):
        self.status_code = status
        self.ok = 200 <= status < 400
        self.body = body

    def iter_content(self, size):
        yield self.body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, status: int = 200, error: Exception = None, fail_codes=()):
        self.status = status
        self.error = error
        self.fail_codes = set(fail_codes)
        self.urls = []

    def get(self, url, stream=False, timeout=None):
        self.urls.append(url)
        if self.error:
            raise self.error
        if any(code in url for code in self.fail_codes):
            return FakeResponse(404)
        return FakeResponse(self.status)


def write_snapshot(path: Path, cards, complete: bool = True) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({
        "scraped_at": "2024-01-01T00:00:00Z",
        "filters": {},
        "total": len(cards),
        "complete": complete,
        "cards": cards,
    }), encoding="utf-8")


class TestSnapshotLedger:
    def test_partial_every_interval(self, config) -> None:
        """Every 10th record overwrites the partial snapshot."""
        ledger = SnapshotLedger(config)

        for i in range(9):
            ledger.record(CardRecord(code=f"1-{i:03d}H"))
        assert not ledger.partial_path.exists()

        ledger.record(CardRecord(code="1-009H"))
        data = json.loads(ledger.partial_path.read_text(encoding="utf-8"))
        assert data["complete"] is False
        assert data["total"] == 10
        assert len(data["cards"]) == 10

        for i in range(10, 20):
            ledger.record(CardRecord(code=f"1-{i:03d}H"))
        data = json.loads(ledger.partial_path.read_text(encoding="utf-8"))
        assert data["total"] == 20

    def test_partial_name_suffix(self, config) -> None:
        ledger = SnapshotLedger(config)

        assert ledger.partial_path.name == "cards_partial.json"
        assert ledger.complete_path.name == "cards.json"

    def test_complete_removes_partial(self, config) -> None:
        ledger = SnapshotLedger(config)
        for i in range(10):
            ledger.record(CardRecord(code=f"1-{i:03d}H"))
        assert ledger.partial_path.exists()

        ledger.complete()

        assert not ledger.partial_path.exists()
        data = json.loads(ledger.complete_path.read_text(encoding="utf-8"))
        assert data["complete"] is True
        assert data["total"] == 10
        assert data["filters"]["sets"] == ["Opus I"]
        assert data["cards"][0]["code"] == "1-000H"

    def test_complete_survives_non_json_filename(self, config) -> None:
        """A snapshot name without .json still gets a distinct partial file, and complete() keeps its output."""
        config.json_filename = "cards.dat"
        ledger = SnapshotLedger(config)
        for i in range(10):
            ledger.record(CardRecord(code=f"1-{i:03d}H"))

        path = ledger.complete()

        assert ledger.partial_path.name == "cards_partial.dat"
        assert path.exists()
        assert not ledger.partial_path.exists()
        assert read_snapshot_cards(path) is not None

    def test_complete_without_partial(self, config) -> None:
        """No partial file on completion is fine."""
        ledger = SnapshotLedger(config)
        ledger.record(CardRecord(code="1-001H"))

        ledger.complete()

        assert ledger.complete_path.exists()

    def test_emergency_save_writes_partial(self, config) -> None:
        ledger = SnapshotLedger(config)
        ledger.record(CardRecord(code="1-001H"))

        path = ledger.emergency_save()

        assert path == ledger.partial_path
        assert json.loads(path.read_text(encoding="utf-8"))["total"] == 1

    def test_emergency_save_swallows_write_errors(self, config, monkeypatch) -> None:
        ledger = SnapshotLedger(config)
        ledger.record(CardRecord(code="1-001H"))

        def boom():
            raise OSError("disk full")

        monkeypatch.setattr(ledger, "save_partial", boom)

        assert ledger.emergency_save() is None

    def test_emergency_save_with_nothing(self, config) -> None:
        assert SnapshotLedger(config).emergency_save() is None

    def test_save_codes(self, config) -> None:
        ledger = SnapshotLedger(config)

        path = ledger.save_codes(["1-001H", "1-002R"])

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["codes"] == ["1-001H", "1-002R"]
        assert data["total"] == 2


class TestDownloadImage:
    def test_downloads_to_code_named_file(self, tmp_path: Path) -> None:
        sess = FakeSession()
        card = CardRecord(code="1-001H")

        assert download_image(card, tmp_path, sess) is True

        target = image_path_for("1-001H", tmp_path)
        assert target.read_bytes() == b"jpegdata"
        assert not target.with_suffix(".jpg.tmp").exists()

    def test_existing_file_is_not_fetched(self, tmp_path: Path) -> None:
        target = image_path_for("1-001H", tmp_path)
        target.write_bytes(b"old")
        sess = FakeSession()

        assert download_image(CardRecord(code="1-001H"), tmp_path, sess) is True

        assert sess.urls == []
        assert target.read_bytes() == b"old"

    def test_http_error_is_a_failure(self, tmp_path: Path) -> None:
        sess = FakeSession(status=404)

        assert download_image(CardRecord(code="1-001H"), tmp_path, sess) is False
        assert not image_path_for("1-001H", tmp_path).exists()

    def test_transport_error_is_a_failure(self, tmp_path: Path) -> None:
        sess = FakeSession(error=requests.ConnectionError("refused"))

        assert download_image(CardRecord(code="1-001H"), tmp_path, sess) is False


class TestDownloadImages:
    def test_counts_successes_and_failures(self, tmp_path: Path) -> None:
        cards = [CardRecord(code=f"1-{i:03d}H") for i in range(12)]
        sess = FakeSession(fail_codes={"1-003H", "1-010H"})

        ok, failed = download_images(cards, tmp_path, concurrent=5, session=sess)

        assert (ok, failed) == (10, 2)
        assert len(sess.urls) == 12

    def test_empty(self, tmp_path: Path) -> None:
        assert download_images([], tmp_path) == (0, 0)


class TestCombineSets:
    def test_total_is_sum_of_set_counts(self, tmp_path: Path) -> None:
        root = tmp_path / "sets"
        write_snapshot(root / "Opus I" / "cards.json", [{"code": "1-001H"}, {"code": "1-002R"}])
        write_snapshot(root / "Opus II" / "cards.json", [{"code": "2-001H"}])

        combined = combine_sets(["Opus I", "Opus II"], root, "cards.json", tmp_path / "all_cards.json")

        assert combined["total"] == 3
        assert combined["total"] == sum(s["count"] for s in combined["sets"])
        assert [c["code"] for c in combined["cards"]] == ["1-001H", "1-002R", "2-001H"]
        assert json.loads((tmp_path / "all_cards.json").read_text(encoding="utf-8"))["total"] == 3

    def test_missing_and_unreadable_sets_are_skipped(self, tmp_path: Path) -> None:
        root = tmp_path / "sets"
        write_snapshot(root / "Opus I" / "cards.json", [{"code": "1-001H"}])
        (root / "Opus III").mkdir(parents=True)
        (root / "Opus III" / "cards.json").write_text("{not json", encoding="utf-8")

        combined = combine_sets(["Opus I", "Opus II", "Opus III"], root, "cards.json", tmp_path / "all.json")

        assert [s["name"] for s in combined["sets"]] == ["Opus I"]
        assert combined["total"] == 1

    def test_cards_are_normalized_records(self, tmp_path: Path) -> None:
        """Combined cards carry every record field; entries without a code are dropped and not counted."""
        root = tmp_path / "sets"
        write_snapshot(root / "Opus I" / "cards.json",
                       [{"code": "1-001H", "set": "Opus I"}, {"name": "no code"}, "junk"])

        combined = combine_sets(["Opus I"], root, "cards.json", tmp_path / "all.json")

        assert combined["sets"] == [{"name": "Opus I", "count": 1}]
        assert combined["total"] == 1
        assert combined["cards"] == [CardRecord(code="1-001H", set_name="Opus I").to_dict()]

    def test_nothing_available(self, tmp_path: Path) -> None:
        combined = combine_sets(["Opus I"], tmp_path / "sets", "cards.json", tmp_path / "all.json")

        assert combined["total"] == 0
        assert combined["sets"] == []
        assert combined["cards"] == []

    def test_set_names_are_sanitized_for_folders(self, tmp_path: Path) -> None:
        root = tmp_path / "sets"
        write_snapshot(root / sanitize_filename("Rebellion's Call") / "cards.json", [{"code": "17-001H"}])

        combined = combine_sets(["Rebellion's Call"], root, "cards.json", tmp_path / "all.json")

        assert combined["sets"] == [{"name": "Rebellion's Call", "count": 1}]


class TestReadSnapshotCards:
    def test_partial_snapshot_is_not_complete(self, tmp_path: Path) -> None:
        path = tmp_path / "cards.json"
        write_snapshot(path, [{"code": "1-001H"}], complete=False)

        assert read_snapshot_cards(path) is None

    def test_missing(self, tmp_path: Path) -> None:
        assert read_snapshot_cards(tmp_path / "nope.json") is None


@pytest.mark.parametrize("name,expected", [
    ("Opus I", "Opus I"),
    ("A/B: C?", "A-B - C"),
    ("trailing. ", "trailing"),
])
def test_sanitize_filename(name: str, expected: str) -> None:
    assert sanitize_filename(name) == expected


def test_summarize_cards() -> None:
    cards = [
        CardRecord(code="1", set_name="Opus I", rarity="Hero", type="Forward"),
        CardRecord(code="2", set_name="Opus I", rarity="Common", type="Backup"),
        CardRecord(code="3"),
    ]

    summary = summarize_cards(cards)

    assert summary["sets"] == {"Opus I": 2, "Unknown": 1}
    assert summary["rarities"]["Hero"] == 1
    assert summary["types"]["Unknown"] == 1
