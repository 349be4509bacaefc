from __future__ import annotations

import json
import sqlite3
import threading
import time
from pathlib import Path

import fitz

from cagminutes.application.services.processing_service import DocumentProcessingService
from cagminutes.core.errors import DocumentDecodeError
from cagminutes.domain.models.document import DocumentReference, PageText
from cagminutes.domain.models.outcome import DocumentStage, DocumentStatus, ProcessingMode
from cagminutes.infrastructure.db.gateway import PersistenceGateway
from cagminutes.infrastructure.db.sqlite import initialize_schema
from cagminutes.infrastructure.http import downloader as downloader_module
from cagminutes.infrastructure.http.downloader import DownloadManager
from cagminutes.infrastructure.parsers.pdf_text import PdfTextExtractor


class FakeDownloader:
    def __init__(self, files: dict[str, Path]) -> None:
        self.files = files
        self.calls: list[tuple[str, bool]] = []

    def fetch(self, url: str, *, title: str | None = None, refresh: bool = False) -> Path | None:
        self.calls.append((url, refresh))
        return self.files.get(url)


class FakeExtractor:
    def __init__(self, pages_by_name: dict[str, object]) -> None:
        self.pages_by_name = pages_by_name

    def extract_pages(self, path: Path) -> list[PageText]:
        pages = self.pages_by_name[path.name]
        if isinstance(pages, Exception):
            raise pages
        return pages


def _bootstrap(tmp_path: Path) -> PersistenceGateway:
    db_path = tmp_path / "minutes.db"
    initialize_schema(db_path)
    return PersistenceGateway(db_path)


def _ref(name: str) -> DocumentReference:
    return DocumentReference(url=f"https://example.org/{name}", title=f"Minutes {name}")


def _file(tmp_path: Path, name: str, body: bytes = b"%PDF-1.4") -> Path:
    path = tmp_path / name
    path.write_bytes(body + name.encode("utf-8"))
    return path


def test_document_is_scanned_compressed_and_committed(tmp_path: Path) -> None:
    ref = _ref("jan.pdf")
    downloader = FakeDownloader({ref.url: _file(tmp_path, "jan.pdf")})
    extractor = FakeExtractor(
        {
            "jan.pdf": [
                PageText(3, "22/CAG/0099"),
                PageText(4, "22/CAG/0099 and 21/CAG/0001"),
                PageText(5, "22/CAG/0099"),
                PageText(9, "22/CAG/0099"),
            ]
        }
    )

    with _bootstrap(tmp_path) as gateway:
        service = DocumentProcessingService(gateway, downloader, extractor)
        outcome = service.process_document(ref)

        assert outcome.status is DocumentStatus.DONE
        assert outcome.stage is DocumentStage.DONE
        assert outcome.references_found == 2
        assert outcome.content_hash is not None
        assert gateway.get_processed(ref.url).content_hash == outcome.content_hash
        locations = {loc.reference_id: loc.page_ranges for loc in gateway.list_locations_for_document(ref.url)}
        assert locations == {"22/CAG/0099": "p3-p5, p9", "21/CAG/0001": "p4"}


def test_second_run_skips_processed_document_without_downloading(tmp_path: Path) -> None:
    ref = _ref("feb.pdf")
    downloader = FakeDownloader({ref.url: _file(tmp_path, "feb.pdf")})
    extractor = FakeExtractor({"feb.pdf": [PageText(1, "22/CAG/0099")]})

    with _bootstrap(tmp_path) as gateway:
        service = DocumentProcessingService(gateway, downloader, extractor)
        first = service.run([ref])
        second = service.run([ref])

        assert first.done == 1
        assert second.skipped == 1
        assert second.outcomes[0].status is DocumentStatus.SKIPPED
        assert downloader.calls == [(ref.url, False)]
        assert len(gateway.list_processed()) == 1
        assert len(gateway.list_locations_for_document(ref.url)) == 1


def test_decode_failure_does_not_stop_other_documents(tmp_path: Path) -> None:
    refs = [_ref("a.pdf"), _ref("b.pdf"), _ref("c.pdf")]
    downloader = FakeDownloader({ref.url: _file(tmp_path, ref.url.rsplit("/", 1)[1]) for ref in refs})
    extractor = FakeExtractor(
        {
            "a.pdf": [PageText(1, "20/CAG/0001")],
            "b.pdf": DocumentDecodeError("corrupt xref"),
            "c.pdf": [PageText(2, "20/CAG/0003")],
        }
    )

    with _bootstrap(tmp_path) as gateway:
        report = DocumentProcessingService(gateway, downloader, extractor).run(refs)

        assert report.attempted == 3
        assert report.done == 2
        assert report.failed == 1
        failed = report.failures()[0]
        assert failed.reference == refs[1]
        assert failed.stage is DocumentStage.EXTRACTING
        assert "corrupt xref" in (failed.error or "")
        assert gateway.is_processed(refs[0].url)
        assert not gateway.is_processed(refs[1].url)
        assert gateway.list_locations_for_reference("20/CAG/0003")[0].document_url == refs[2].url


def test_outcomes_follow_input_order(tmp_path: Path) -> None:
    refs = [_ref(f"{i}.pdf") for i in range(6)]
    downloader = FakeDownloader({ref.url: _file(tmp_path, ref.url.rsplit("/", 1)[1]) for ref in refs})
    extractor = FakeExtractor({f"{i}.pdf": [PageText(1, "")] for i in range(6)})

    with _bootstrap(tmp_path) as gateway:
        report = DocumentProcessingService(gateway, downloader, extractor, max_workers=2).run(refs)

    assert [outcome.reference for outcome in report.outcomes] == refs
    assert report.done == 6


def test_download_failure_writes_nothing(tmp_path: Path) -> None:
    ref = _ref("gone.pdf")
    extractor = FakeExtractor({})

    with _bootstrap(tmp_path) as gateway:
        outcome = DocumentProcessingService(gateway, FakeDownloader({}), extractor).process_document(ref)

        assert outcome.status is DocumentStatus.FAILED
        assert outcome.stage is DocumentStage.FAILED
        assert outcome.error == "download failed"
        assert not gateway.is_processed(ref.url)


def test_unexpected_error_is_contained_and_reports_its_stage(tmp_path: Path) -> None:
    ref = _ref("odd.pdf")
    downloader = FakeDownloader({ref.url: _file(tmp_path, "odd.pdf")})
    extractor = FakeExtractor({"odd.pdf": RuntimeError("decoder crashed")})

    with _bootstrap(tmp_path) as gateway:
        outcome = DocumentProcessingService(gateway, downloader, extractor).process_document(ref)

    assert outcome.status is DocumentStatus.FAILED
    assert outcome.stage is DocumentStage.EXTRACTING
    assert outcome.error == "decoder crashed"


def test_exhausted_commit_retries_fail_only_that_document(tmp_path: Path) -> None:
    class BusyGateway:
        def __init__(self) -> None:
            self.committed: list[str] = []

        def is_processed(self, url: str) -> bool:
            return False

        def commit(self, url: str, content_hash: str, references_by_id) -> None:
            if url.endswith("busy.pdf"):
                raise sqlite3.OperationalError("database is locked")
            self.committed.append(url)

    refs = [_ref("busy.pdf"), _ref("fine.pdf")]
    downloader = FakeDownloader({ref.url: _file(tmp_path, ref.url.rsplit("/", 1)[1]) for ref in refs})
    extractor = FakeExtractor({"busy.pdf": [PageText(1, "")], "fine.pdf": [PageText(1, "")]})
    gateway = BusyGateway()

    report = DocumentProcessingService(gateway, downloader, extractor).run(refs)

    assert [outcome.status for outcome in report.outcomes] == [DocumentStatus.FAILED, DocumentStatus.DONE]
    assert report.outcomes[0].stage is DocumentStage.COMMITTING
    assert gateway.committed == [refs[1].url]


def test_changed_mode_rescans_only_when_digest_moves(tmp_path: Path) -> None:
    ref = _ref("mar.pdf")
    path = _file(tmp_path, "mar.pdf")
    downloader = FakeDownloader({ref.url: path})
    extractor = FakeExtractor({"mar.pdf": [PageText(1, "22/CAG/0099")]})

    with _bootstrap(tmp_path) as gateway:
        DocumentProcessingService(gateway, downloader, extractor).run([ref])
        changed_mode = DocumentProcessingService(gateway, downloader, extractor, mode=ProcessingMode.CHANGED)

        unchanged = changed_mode.process_document(ref)
        assert unchanged.status is DocumentStatus.UNCHANGED
        assert downloader.calls[-1] == (ref.url, True)

        path.write_bytes(b"%PDF-1.4 revised")
        extractor.pages_by_name["mar.pdf"] = [PageText(2, "23/CAG/0042")]
        rescanned = changed_mode.process_document(ref)

        assert rescanned.status is DocumentStatus.DONE
        assert gateway.get_processed(ref.url).content_hash == rescanned.content_hash
        locations = {loc.reference_id: loc.page_ranges for loc in gateway.list_locations_for_document(ref.url)}
        assert locations == {"23/CAG/0042": "p2"}


def test_run_log_and_progress_events(tmp_path: Path) -> None:
    refs = [_ref("x.pdf"), _ref("y.pdf")]
    downloader = FakeDownloader({refs[0].url: _file(tmp_path, "x.pdf")})
    extractor = FakeExtractor({"x.pdf": [PageText(1, "22/CAG/0099")]})
    log_path = tmp_path / "logs" / "run.jsonl"
    events: list[dict[str, object]] = []

    with _bootstrap(tmp_path) as gateway:
        service = DocumentProcessingService(gateway, downloader, extractor, log_path=log_path)
        service.run(refs, progress_callback=events.append)

    rows = [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]
    assert sorted((row["url"], row["status"]) for row in rows) == [
        (refs[0].url, "done"),
        (refs[1].url, "failed"),
    ]
    kinds = [event["event"] for event in events]
    assert kinds[0] == "batch_start"
    assert kinds.count("document_start") == 2
    assert kinds.count("document_done") == 2


def test_empty_batch_is_a_no_op(tmp_path: Path) -> None:
    with _bootstrap(tmp_path) as gateway:
        report = DocumentProcessingService(gateway, FakeDownloader({}), FakeExtractor({})).run([])

    assert report.attempted == 0


def test_simulated_batch_keeps_downloads_within_capacity(tmp_path: Path, monkeypatch) -> None:
    doc = fitz.open()
    doc.new_page().insert_text((72, 72), "Item 2: 22/CAG/0099")
    pdf_bytes = doc.tobytes()
    doc.close()

    state = {"active": 0, "peak": 0}
    guard = threading.Lock()

    class _Response:
        def __enter__(self):
            return self

        def __exit__(self, *exc_info):
            return False

        def read(self) -> bytes:
            return pdf_bytes

    def fake_urlopen(request, timeout=None):
        with guard:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        time.sleep(0.05)
        with guard:
            state["active"] -= 1
        return _Response()

    monkeypatch.setattr(downloader_module.urllib.request, "urlopen", fake_urlopen)
    refs = [_ref(f"minutes-{i}.pdf") for i in range(9)]

    with _bootstrap(tmp_path) as gateway:
        service = DocumentProcessingService(
            gateway,
            DownloadManager(tmp_path / "downloads", max_concurrent=3),
            PdfTextExtractor(),
        )
        report = service.run(refs)

        assert report.done == 9
        assert 1 <= state["peak"] <= 3
        assert len(gateway.list_locations_for_reference("22/CAG/0099")) == 9


def _pdf_bytes(text: str) -> bytes:
    doc = fitz.open()
    doc.new_page().insert_text((72, 72), text)
    body = doc.tobytes()
    doc.close()
    return body


class _PdfResponse:
    def __init__(self, body: bytes) -> None:
        self.body = body

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def read(self) -> bytes:
        return self.body


def test_url_listed_twice_is_processed_once(tmp_path: Path, monkeypatch) -> None:
    bodies = {
        "https://example.org/dup.pdf": _pdf_bytes("Item 1: 21/CAG/0001"),
        "https://example.org/other.pdf": _pdf_bytes("Item 4: 21/CAG/0002"),
    }
    calls: list[str] = []
    guard = threading.Lock()

    def fake_urlopen(request, timeout=None):
        with guard:
            calls.append(request.full_url)
        return _PdfResponse(bodies[request.full_url])

    monkeypatch.setattr(downloader_module.urllib.request, "urlopen", fake_urlopen)
    refs = [
        DocumentReference(url="https://example.org/dup.pdf", title="Minutes (first listing)"),
        DocumentReference(url="https://example.org/other.pdf", title="Other minutes"),
        DocumentReference(url="https://example.org/dup.pdf", title="Minutes (second listing)"),
    ]

    with _bootstrap(tmp_path) as gateway:
        service = DocumentProcessingService(gateway, DownloadManager(tmp_path / "downloads"), PdfTextExtractor())
        report = service.run(refs)

        assert report.attempted == 2
        assert report.done == 2
        assert report.failed == 0
        assert [outcome.reference for outcome in report.outcomes] == refs[:2]
        assert sorted(calls) == sorted(bodies)
        assert len(gateway.list_locations_for_reference("21/CAG/0001")) == 1


def test_documents_sharing_a_basename_keep_their_own_references(tmp_path: Path, monkeypatch) -> None:
    bodies = {
        "https://example.org/2019/minutes.pdf": _pdf_bytes("Item 1: 19/CAG/0019"),
        "https://example.org/2020/minutes.pdf": _pdf_bytes("Item 1: 20/CAG/0020"),
    }
    monkeypatch.setattr(
        downloader_module.urllib.request,
        "urlopen",
        lambda request, timeout=None: _PdfResponse(bodies[request.full_url]),
    )
    refs = [DocumentReference(url=url, title="Minutes") for url in bodies]

    with _bootstrap(tmp_path) as gateway:
        service = DocumentProcessingService(gateway, DownloadManager(tmp_path / "downloads"), PdfTextExtractor())
        report = service.run(refs)

        assert report.done == 2
        assert [loc.reference_id for loc in gateway.list_locations_for_document(refs[0].url)] == ["19/CAG/0019"]
        assert [loc.reference_id for loc in gateway.list_locations_for_document(refs[1].url)] == ["20/CAG/0020"]
