"""Command-line interface for document processing, batch CSV export and Q&A.

Provides subcommands for processing a single document to JSON, processing
a folder of documents into a CSV summary, and asking questions about a
previously saved result.
"""

import argparse
import asyncio
import csv
import json
import sys
from pathlib import Path

from docintel.models import ProcessingMethod, ProcessingResult, QAAnswer
from docintel.pipeline.processor import DocumentPipeline, build_pipeline, emergency_result
from docintel.qa.responder import answer_question
from docintel.utils.config import load_config
from docintel.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

_SUPPORTED_EXTENSIONS = ("*.png", "*.jpg", "*.jpeg", "*.tiff", "*.tif", "*.webp", "*.pdf")
_CSV_COLUMNS = [
    "filename",
    "status",
    "category",
    "classification_confidence",
    "suggested_name",
    "language",
    "dates",
    "tags",
    "processing_method",
    "quality_score",
    "processing_time_s",
    "error",
]


def _find_documents(input_dir: Path) -> list[Path]:
    """Find all supported document files in a directory.

    Args:
        input_dir: Directory to scan for documents.

    Returns:
        Sorted list of document file paths.
    """
    files: list[Path] = []
    for ext in _SUPPORTED_EXTENSIONS:
        files.extend(input_dir.glob(ext))
        files.extend(input_dir.glob(ext.upper()))
    return sorted(set(files))


def _doc_type_for(path: Path) -> str:
    return "pdf" if path.suffix.lower() == ".pdf" else "image"


def _load_pipeline(local: bool = False) -> DocumentPipeline:
    """Build the pipeline from configuration, optionally forcing the local path."""
    config = load_config()
    if local:
        config.pipeline.mode = "local"
    return build_pipeline(config)


def _csv_row(filename: str, result: ProcessingResult) -> dict[str, object]:
    failed = result.processing_method == ProcessingMethod.EMERGENCY
    return {
        "filename": filename,
        "status": "failed" if failed else "success",
        "category": result.category.value,
        "classification_confidence": round(result.classification.confidence, 3),
        "suggested_name": result.suggested_name,
        "language": result.language,
        "dates": "; ".join(d.normalized for d in result.dates),
        "tags": "; ".join(result.tags),
        "processing_method": result.processing_method.value,
        "quality_score": round(result.quality_score, 3),
        "processing_time_s": round(result.processing_time_ms / 1000, 2),
        "error": "; ".join(result.processing_notes) if failed else None,
    }


async def _process_paths(pipeline: DocumentPipeline, files: list[Path]) -> list[ProcessingResult]:
    """Process ``files`` in input order; unreadable files get a failed result."""
    try:
        results: list[ProcessingResult | None] = [None] * len(files)
        groups: dict[str, list[tuple[int, bytes]]] = {}
        for index, path in enumerate(files):
            try:
                content = path.read_bytes()
            except OSError as e:
                logger.error("Cannot read %s: %s", path.name, e)
                results[index] = emergency_result(e)
                continue
            groups.setdefault(_doc_type_for(path), []).append((index, content))

        for doc_type, items in groups.items():
            batch = await pipeline.process_batch([content for _, content in items], doc_type)
            for (index, _), result in zip(items, batch, strict=True):
                results[index] = result
        return [r for r in results if r is not None]
    finally:
        await pipeline.aclose()


def process_folder(
    input_dir: Path,
    output_csv: Path,
    local: bool = False,
    verbose: bool = False,
) -> dict[str, int]:
    """Process all documents in a folder and export results to CSV.

    Args:
        input_dir: Directory containing document files.
        output_csv: Path for the output CSV file.
        local: Force the local processing path.
        verbose: Whether to print per-file results.

    Returns:
        Summary dict with total, successful, and failed counts.
    """
    files = _find_documents(input_dir)
    if not files:
        logger.warning("No documents found in %s", input_dir)
        return {"total": 0, "successful": 0, "failed": 0}

    logger.info("Found %d documents to process", len(files))
    results = asyncio.run(_process_paths(_load_pipeline(local), files))

    rows = [_csv_row(path.name, result) for path, result in zip(files, results, strict=True)]
    if verbose:
        for row in rows:
            print(f"{row['filename']}: {row['category']} ({row['processing_method']})")

    failed = sum(1 for row in rows if row["status"] == "failed")
    _write_csv(rows, output_csv)
    logger.info("Results written to %s", output_csv)

    summary = {"total": len(files), "successful": len(files) - failed, "failed": failed}
    _print_summary(summary, output_csv)
    return summary


def _write_csv(rows: list[dict[str, object]], output_path: Path) -> None:
    """Write processing results to a CSV file.

    Args:
        rows: One dictionary per document.
        output_path: Path for the output CSV file.
    """
    if not rows:
        return

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=_CSV_COLUMNS, extrasaction="ignore")
        writer.writeheader()
        writer.writerows(rows)


def _print_summary(summary: dict[str, int], output_csv: Path) -> None:
    """Print batch processing summary to stdout.

    Args:
        summary: Counts of total, successful, and failed documents.
        output_csv: Path to the output CSV.
    """
    print(f"\n{'=' * 50}")
    print("Batch Processing Complete")
    print(f"{'=' * 50}")
    print(f"Total:      {summary['total']}")
    print(f"Successful: {summary['successful']}")
    print(f"Failed:     {summary['failed']}")
    print(f"Output:     {output_csv}")


def process_single(file_path: Path, local: bool = False) -> dict[str, object]:
    """Process a single document and return its serialized result.

    Args:
        file_path: Path to the document file.
        local: Force the local processing path.

    Returns:
        The result as a JSON-serializable dictionary, with the file name.
    """

    async def run() -> ProcessingResult:
        pipeline = _load_pipeline(local)
        try:
            return await pipeline.process_document(
                file_path.read_bytes(), _doc_type_for(file_path)
            )
        finally:
            await pipeline.aclose()

    result = asyncio.run(run())
    return {"filename": file_path.name, **result.to_dict()}


def ask_question(result_path: Path, question: str, local: bool = False) -> dict[str, object]:
    """Answer a question about a result saved by the ``process`` command.

    Args:
        result_path: JSON file written by ``process``.
        question: Free-text question.
        local: Answer with local pattern matching only.

    Returns:
        Dictionary with answer, confidence and method.
    """
    context = ProcessingResult.from_dict(json.loads(result_path.read_text(encoding="utf-8")))

    async def run() -> QAAnswer:
        if local:
            return await answer_question(question, context)
        pipeline = _load_pipeline()
        try:
            return await pipeline.answer_question(question, context)
        finally:
            await pipeline.aclose()

    answer = asyncio.run(run())
    return {"answer": answer.answer, "confidence": answer.confidence, "method": answer.method}


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate command.

    Args:
        argv: Command-line arguments (defaults to sys.argv).
    """
    parser = argparse.ArgumentParser(
        description="Document Intelligence Processor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    single_parser = subparsers.add_parser("process", help="Process a single document")
    single_parser.add_argument("file", type=Path, help="Document file to process")
    single_parser.add_argument("-o", "--output", type=Path, help="Output JSON file")
    single_parser.add_argument(
        "--local", action="store_true", help="Use only local processing"
    )

    batch_parser = subparsers.add_parser("batch", help="Process a folder of documents")
    batch_parser.add_argument(
        "input_dir", type=Path, help="Input directory with documents"
    )
    batch_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=Path("results.csv"),
        help="Output CSV file (default: results.csv)",
    )
    batch_parser.add_argument(
        "--local", action="store_true", help="Use only local processing"
    )
    batch_parser.add_argument(
        "-v", "--verbose", action="store_true", help="Verbose output"
    )

    ask_parser = subparsers.add_parser("ask", help="Ask a question about a processed document")
    ask_parser.add_argument("result", type=Path, help="JSON result written by 'process'")
    ask_parser.add_argument("question", help="Question to ask")
    ask_parser.add_argument(
        "--local", action="store_true", help="Answer with local pattern matching only"
    )

    args = parser.parse_args(argv)

    setup_logging()

    if args.command == "process":
        if not args.file.exists():
            print(f"Error: {args.file} does not exist", file=sys.stderr)
            sys.exit(1)
        result = process_single(args.file, args.local)
        output_str = json.dumps(result, indent=2, ensure_ascii=False)
        if args.output:
            args.output.parent.mkdir(parents=True, exist_ok=True)
            args.output.write_text(output_str, encoding="utf-8")
            print(f"Output written to {args.output}")
        else:
            print(output_str)
    elif args.command == "batch":
        if not args.input_dir.is_dir():
            print(f"Error: {args.input_dir} is not a directory", file=sys.stderr)
            sys.exit(1)
        process_folder(args.input_dir, args.output, args.local, args.verbose)
    elif args.command == "ask":
        if not args.result.exists():
            print(f"Error: {args.result} does not exist", file=sys.stderr)
            sys.exit(1)
        answer = ask_question(args.result, args.question, args.local)
        print(json.dumps(answer, indent=2, ensure_ascii=False))
    else:
        parser.print_help()
        sys.exit(0)


if __name__ == "__main__":
    main()
