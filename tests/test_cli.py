"""Tests for the command-line interface and CSV export."""

import csv
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from docintel.cli import (
    _find_documents,
    _print_summary,
    _write_csv,
    ask_question,
    main,
    process_folder,
    process_single,
)
from docintel.models import ProcessingResult
from docintel.ocr.orchestrator import EngineOrchestrator
from docintel.pipeline.processor import DocumentPipeline, emergency_result
from docintel.utils.config import RetryConfig


def _fake_pipeline(engine: Callable[..., Any], text: str) -> DocumentPipeline:
    return DocumentPipeline(
        EngineOrchestrator(
            [engine("vision", text, 0.85)],
            retry=RetryConfig(max_attempts=1, backoff_seconds=0.0),
        )
    )


def _write_result(path: Path, result: ProcessingResult) -> Path:
    path.write_text(json.dumps(result.to_dict(), ensure_ascii=False), encoding="utf-8")
    return path


class TestFindDocuments:
    """Tests for document discovery."""

    def test_finds_supported_files(self, tmp_path: Path) -> None:
        for name in ("a.png", "b.PDF", "c.jpeg", "d.txt", "e.tiff"):
            (tmp_path / name).write_bytes(b"data")

        found = [p.name for p in _find_documents(tmp_path)]
        assert found == ["a.png", "b.PDF", "c.jpeg", "e.tiff"]

    def test_empty_directory(self, tmp_path: Path) -> None:
        assert _find_documents(tmp_path) == []


class TestWriteCSV:
    """Tests for CSV export."""

    def test_no_rows_writes_nothing(self, tmp_path: Path) -> None:
        output = tmp_path / "out.csv"
        _write_csv([], output)
        assert not output.exists()

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        output = tmp_path / "nested" / "out.csv"
        _write_csv([{"filename": "a.png", "status": "success"}], output)
        with open(output, encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert rows[0]["filename"] == "a.png"
        assert rows[0]["category"] == ""


class TestProcessFolder:
    """Tests for folder processing."""

    def test_csv_rows_and_summary(
        self,
        tmp_path: Path,
        processed_result: Callable[..., ProcessingResult],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        input_dir = tmp_path / "docs"
        input_dir.mkdir()
        (input_dir / "attestation.png").write_bytes(b"one")
        (input_dir / "broken.png").write_bytes(b"two")
        output = tmp_path / "results.csv"

        pipeline = MagicMock()
        pipeline.process_batch = AsyncMock(
            return_value=[processed_result(), emergency_result(RuntimeError("bad scan"))]
        )
        pipeline.aclose = AsyncMock()
        with patch("docintel.cli._load_pipeline", return_value=pipeline) as load:
            summary = process_folder(input_dir, output, local=True, verbose=True)

        assert summary == {"total": 2, "successful": 1, "failed": 1}
        load.assert_called_once_with(True)
        pipeline.process_batch.assert_awaited_once_with([b"one", b"two"], "image")
        pipeline.aclose.assert_awaited_once()

        with open(output, encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert rows[0]["filename"] == "attestation.png"
        assert rows[0]["status"] == "success"
        assert rows[0]["category"] == "certificate"
        assert rows[0]["dates"] == "15/01/2024; 20/03/2024"
        assert rows[0]["error"] == ""
        assert rows[1]["status"] == "failed"
        assert rows[1]["processing_method"] == "emergency"
        assert rows[1]["error"] == "Processing failed: bad scan"

        out = capsys.readouterr().out
        assert "attestation.png: certificate (local)" in out
        assert "Batch Processing Complete" in out

    @pytest.mark.parametrize("kind", ["directory", "dangling_symlink"])
    def test_unreadable_file_recorded_as_failed(
        self,
        tmp_path: Path,
        processed_result: Callable[..., ProcessingResult],
        kind: str,
    ) -> None:
        input_dir = tmp_path / "docs"
        input_dir.mkdir()
        (input_dir / "a.png").write_bytes(b"one")
        if kind == "directory":
            (input_dir / "b.png").mkdir()
        else:
            (input_dir / "b.png").symlink_to(tmp_path / "missing.png")
        output = tmp_path / "results.csv"

        pipeline = MagicMock()
        pipeline.process_batch = AsyncMock(return_value=[processed_result()])
        pipeline.aclose = AsyncMock()
        with patch("docintel.cli._load_pipeline", return_value=pipeline):
            summary = process_folder(input_dir, output)

        assert summary == {"total": 2, "successful": 1, "failed": 1}
        pipeline.process_batch.assert_awaited_once_with([b"one"], "image")
        with open(output, encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert [(r["filename"], r["status"]) for r in rows] == [
            ("a.png", "success"),
            ("b.png", "failed"),
        ]
        assert rows[1]["error"].startswith("Processing failed:")

    def test_pdfs_batched_separately(
        self, tmp_path: Path, processed_result: Callable[..., ProcessingResult]
    ) -> None:
        (tmp_path / "a.pdf").write_bytes(b"%PDF")
        (tmp_path / "b.png").write_bytes(b"png")

        pipeline = MagicMock()
        pipeline.process_batch = AsyncMock(return_value=[processed_result()])
        pipeline.aclose = AsyncMock()
        with patch("docintel.cli._load_pipeline", return_value=pipeline):
            summary = process_folder(tmp_path, tmp_path / "out.csv")

        assert summary["total"] == 2
        doc_types = [c.args[1] for c in pipeline.process_batch.await_args_list]
        assert sorted(doc_types) == ["image", "pdf"]

    def test_empty_folder(self, tmp_path: Path) -> None:
        with patch("docintel.cli._load_pipeline") as load:
            summary = process_folder(tmp_path, tmp_path / "out.csv")
        assert summary == {"total": 0, "successful": 0, "failed": 0}
        load.assert_not_called()


class TestProcessSingle:
    """Tests for single-document processing."""

    def test_returns_serialized_result(
        self, tmp_path: Path, engine: Callable[..., Any], css_text: str
    ) -> None:
        path = tmp_path / "bill.png"
        path.write_bytes(b"png")
        fake = engine("vision", css_text, 0.85)
        pipeline = DocumentPipeline(
            EngineOrchestrator([fake], retry=RetryConfig(max_attempts=1, backoff_seconds=0.0))
        )
        with patch("docintel.cli._load_pipeline", return_value=pipeline):
            result = process_single(path, local=True)

        assert result["filename"] == "bill.png"
        assert result["category"] == "insurance"
        assert result["processing_method"] == "local"
        assert fake.closed is True


class TestAskQuestion:
    """Tests for questions about saved results."""

    def test_local_answer_needs_no_pipeline(
        self, tmp_path: Path, processed_result: Callable[..., ProcessingResult]
    ) -> None:
        path = _write_result(tmp_path / "result.json", processed_result())
        with patch("docintel.cli._load_pipeline") as load:
            answer = ask_question(path, "When was it issued?", local=True)

        load.assert_not_called()
        assert "15 janvier 2024" in answer["answer"]
        assert answer["method"] == "local"

    def test_uses_pipeline_responder(
        self,
        tmp_path: Path,
        engine: Callable[..., Any],
        processed_result: Callable[..., ProcessingResult],
    ) -> None:
        path = _write_result(tmp_path / "result.json", processed_result())
        with patch("docintel.cli._load_pipeline", return_value=_fake_pipeline(engine, "")):
            answer = ask_question(path, "Who is named here?")
        assert answer["answer"] == "I found these names: Jean Martin."


class TestPrintSummary:
    """Tests for summary output."""

    def test_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        _print_summary({"total": 3, "successful": 2, "failed": 1}, Path("out.csv"))
        out = capsys.readouterr().out
        assert "Total:      3" in out
        assert "Failed:     1" in out
        assert "out.csv" in out


class TestMain:
    """Tests for argument parsing and dispatch."""

    def test_no_command_prints_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 0
        assert "process" in capsys.readouterr().out

    def test_process_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["process", str(tmp_path / "missing.png")])
        assert exc_info.value.code == 1

    def test_batch_requires_directory(self, tmp_path: Path) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["batch", str(tmp_path / "nowhere")])
        assert exc_info.value.code == 1

    def test_ask_missing_result(self, tmp_path: Path) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["ask", str(tmp_path / "missing.json"), "What is it?"])
        assert exc_info.value.code == 1

    def test_process_writes_json(
        self, tmp_path: Path, engine: Callable[..., Any], macedonian_text: str
    ) -> None:
        path = tmp_path / "uverenie.png"
        path.write_bytes(b"png")
        output = tmp_path / "out" / "result.json"
        with patch("docintel.cli._load_pipeline", return_value=_fake_pipeline(engine, macedonian_text)):
            main(["process", str(path), "-o", str(output), "--local"])

        data = json.loads(output.read_text(encoding="utf-8"))
        assert data["filename"] == "uverenie.png"
        assert data["category"] == "certificate"
        assert data["suggested_name"] == "Уверение_Информатика_12_03_2023"

    def test_ask_prints_answer(
        self,
        tmp_path: Path,
        processed_result: Callable[..., ProcessingResult],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        path = _write_result(tmp_path / "result.json", processed_result())
        with patch("docintel.cli.setup_logging"):
            main(["ask", str(path), "what type of document is this?", "--local"])
        data = json.loads(capsys.readouterr().out)
        assert data["method"] == "local"
        assert "certificate" in data["answer"]
