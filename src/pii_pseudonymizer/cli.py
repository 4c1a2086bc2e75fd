"""CLI interface for pii-pseudonymizer.

Usage:
    # Anonymize extracted text (stdin or --input), JSON result on stdout
    pii-pseudonymizer anonymize --input letter.txt --no-recognizer

    # Write the redacted text and the recovery mapping to files
    pii-pseudonymizer anonymize -i letter.txt -o letter.anon.txt -m letter.mapping.json

    # De-anonymize text using a mapping file
    pii-pseudonymizer restore --mapping letter.mapping.json < letter.anon.txt

    # List supported entity types
    pii-pseudonymizer types
"""

from __future__ import annotations
import argparse
import json
import logging
import sys

from .anonymizer import Anonymizer, AnonymizerConfig
from .config import load_from_yaml
from .errors import PseudonymizerError
from .mapping import MappingArtifact, restore
from .types import TYPE_PRIORITY, EntityType


def _build_config(args: argparse.Namespace) -> AnonymizerConfig:
    config = load_from_yaml(args.config) if args.config else AnonymizerConfig()
    if args.no_recognizer:
        config.use_recognizer = False
    if args.backend:
        config.recognizer_backend = args.backend
    if args.model:
        config.model_name = args.model
    if args.language:
        config.language = args.language
    if args.skip_types:
        config.skip_types |= {EntityType(t.strip().upper()) for t in args.skip_types.split(",") if t.strip()}
    if args.allow_list:
        config.allow_list |= {v for v in args.allow_list.split(",") if v}
    return config


def _read_input(args: argparse.Namespace) -> str:
    if args.input:
        with open(args.input, encoding="utf-8") as f:
            return f.read()
    return sys.stdin.read()


def cmd_anonymize(args: argparse.Namespace) -> None:
    """Detect and pseudonymize PII in plain text."""
    anonymizer = Anonymizer(_build_config(args))
    text = _read_input(args)

    result = anonymizer.anonymize_sync(text, timeout=args.timeout)

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(result.text)
    if args.mapping:
        result.mapping.write(args.mapping)

    if args.output and args.mapping:
        summary = {
            "entities": len(result.mapping.entities),
            "mlSkipped": result.review.detection.ml_skipped,
        }
        json.dump(summary, sys.stdout)
    else:
        output = {
            "text": result.text,
            "entities": result.review.to_records(),
            "mapping": result.mapping.to_dict(),
            "mlSkipped": result.review.detection.ml_skipped,
        }
        json.dump(output, sys.stdout, ensure_ascii=False)
    sys.stdout.write("\n")


def cmd_restore(args: argparse.Namespace) -> None:
    """Replace pseudonyms in stdin text with the originals from a mapping file."""
    artifact = MappingArtifact.read(args.mapping)
    sys.stdout.write(restore(_read_input(args), artifact.entities))


def cmd_types(args: argparse.Namespace) -> None:
    """List entity types with their pseudonym tag and overlap priority."""
    rows = [
        {"type": t.value, "tag": t.tag, "priority": TYPE_PRIORITY.get(t, 0)}
        for t in EntityType
    ]
    json.dump(rows, sys.stdout, indent=2)
    sys.stdout.write("\n")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="pii-pseudonymizer",
        description="Reversible PII pseudonymization for extracted document text",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)")

    sub = parser.add_subparsers(dest="command", required=True)

    p_anon = sub.add_parser("anonymize", help="Pseudonymize text (stdin or --input)")
    p_anon.add_argument("-i", "--input", help="Input text file (default: stdin)")
    p_anon.add_argument("-o", "--output", help="Write redacted text here")
    p_anon.add_argument("-m", "--mapping", help="Write the recovery mapping JSON here")
    p_anon.add_argument("--config", help="YAML config file")
    p_anon.add_argument("--no-recognizer", action="store_true", help="Rule-based detection only")
    p_anon.add_argument("--backend", choices=["transformers", "presidio"], help="Recognizer backend")
    p_anon.add_argument("--model", help="Token-classification model name")
    p_anon.add_argument("--language", help="Language code (presidio backend)")
    p_anon.add_argument("--timeout", type=float, default=None, help="Per-document budget in seconds")
    p_anon.add_argument("--skip-types", default="", help="Comma-separated entity types to skip")
    p_anon.add_argument("--allow-list", default="", help="Comma-separated values to never replace")

    p_restore = sub.add_parser("restore", help="Restore originals (stdin or --input)")
    p_restore.add_argument("-i", "--input", help="Input text file (default: stdin)")
    p_restore.add_argument("-m", "--mapping", required=True, help="Mapping JSON file")

    sub.add_parser("types", help="List entity types")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=[logging.WARNING, logging.INFO, logging.DEBUG][min(args.verbose, 2)],
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    cmds = {
        "anonymize": cmd_anonymize,
        "restore": cmd_restore,
        "types": cmd_types,
    }
    try:
        cmds[args.command](args)
    except (PseudonymizerError, ValueError) as exc:
        sys.stderr.write(f"error: {exc}\n")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
