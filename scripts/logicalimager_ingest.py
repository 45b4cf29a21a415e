#!/usr/bin/env python3
# scripts/logicalimager_ingest.py

import argparse
import json
import logging
import sys
import uuid
from pathlib import Path
from typing import Any, Dict, List

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from logicalimager.case.blackboard import Blackboard
from logicalimager.case.database import CaseDatabase
from logicalimager.case.models import DataSource
from logicalimager.core.config import load_config
from logicalimager.core.errors import ConfigError, RepositoryError
from logicalimager.core.results import IngestResult
from logicalimager.pipeline.orchestrator import LogicalImageProcessor
from logicalimager.rules.parser import load_rule_configuration

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("logicalimager_ingest")

EXIT_CODES = {
    IngestResult.NO_ERRORS: 0,
    IngestResult.CRITICAL_ERRORS: 1,
    IngestResult.NONCRITICAL_ERRORS: 2,
}


def summarize(
    result: IngestResult,
    errors: List[str],
    data_sources: List[DataSource],
    blackboard: Blackboard,
) -> Dict[str, Any]:
    """Build a JSON-serializable summary of a finished ingest."""
    return {
        "result": result.value,
        "errors": errors,
        "data_sources": [ds.model_dump(mode="json") for ds in data_sources],
        "posted_artifacts": blackboard.count_posted(),
    }


def main():
    parser = argparse.ArgumentParser(
        description="Add a logical imager acquisition to a case",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Ingest a Logical_Imager_* folder from the collection drive
  logicalimager_ingest.py /media/usb/Logical_Imager_HOST_20190101_10_00_00 \\
      --dest case/ModuleOutput/LogicalImager/HOST

  # Annotate interesting files with the rule descriptions
  logicalimager_ingest.py ACQ --dest case/acq --rules logical-imager-config.json
        """,
    )
    parser.add_argument("source", help="Acquisition folder written by the logical imager")
    parser.add_argument("--dest", required=True, help="Destination folder inside the case")
    parser.add_argument("--device-id", default=None, help="Device identifier (default: random UUID)")
    parser.add_argument("--time-zone", default="", help="Time zone of the data source")
    parser.add_argument(
        "--config",
        default="config/config.yaml",
        help="Configuration file path (default: config/config.yaml)",
    )
    parser.add_argument("--case-db", default=None, help="Case database path (overrides config)")
    parser.add_argument("--rules", default=None, help="Rule configuration JSON (overrides config)")
    parser.add_argument("--output", default=None, help="Write the JSON summary to this file")
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose logging"
    )

    args = parser.parse_args()

    # Load configuration
    try:
        config = load_config(args.config)
    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.logging.level,
        format=config.logging.format,
        force=True,
    )

    source = Path(args.source)
    if not source.is_dir():
        parser.error(f"Not a directory: {source}")

    rules = None
    rules_path = args.rules or config.ingest.rules_path
    if rules_path:
        try:
            rules = load_rule_configuration(rules_path)
        except ConfigError as e:
            logger.error(f"Invalid rule configuration {rules_path}: {e}")
            sys.exit(1)

    try:
        case_db = CaseDatabase(args.case_db or config.case.db_path)
    except RepositoryError as e:
        logger.error(f"Failed to open case database: {e}")
        sys.exit(1)

    blackboard = Blackboard(case_db)
    processor = LogicalImageProcessor(
        case_db, options=config.ingest, blackboard=blackboard, rules=rules
    )
    summary: Dict[str, Any] = {}

    def on_complete(result, errors, data_sources):
        summary.update(summarize(result, errors, data_sources, blackboard))

    processor.run(
        args.device_id or str(uuid.uuid4()),
        args.time_zone,
        source,
        Path(args.dest),
        logger.info,
        on_complete,
    )

    try:
        while not processor.join(timeout=0.5):
            pass
    except KeyboardInterrupt:
        logger.warning("Interrupted, cancelling ingest")
        processor.cancel()
        processor.join()

    case_db.close()

    output = json.dumps(summary, indent=2)
    if args.output:
        output_path = Path(args.output).resolve()
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(output, encoding="utf-8")
        logger.info(f"Wrote ingest summary to {output_path}")
    else:
        print(output)

    sys.exit(EXIT_CODES[IngestResult(summary["result"])])


if __name__ == "__main__":
    main()
