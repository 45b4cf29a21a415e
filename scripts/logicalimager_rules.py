#!/usr/bin/env python3
# scripts/logicalimager_rules.py

import argparse
import json
import logging
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from logicalimager.core.errors import ConfigError
from logicalimager.rules.matcher import scan_directory
from logicalimager.rules.parser import dump_configuration, load_rule_configuration

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("logicalimager_rules")


def main():
    parser = argparse.ArgumentParser(
        description="Validate a logical imager rule configuration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate a configuration file
  logicalimager_rules.py logical-imager-config.json

  # Print the normalized configuration
  logicalimager_rules.py logical-imager-config.json --dump

  # Show which files of a folder the rules would flag
  logicalimager_rules.py logical-imager-config.json --scan /mnt/evidence
        """,
    )
    parser.add_argument("config", help="Rule configuration JSON file")
    parser.add_argument(
        "--no-carry-over",
        action="store_true",
        help="Do not seed each rule from the previous rule of its set",
    )
    parser.add_argument("--dump", action="store_true", help="Print the normalized configuration")
    parser.add_argument("--scan", default=None, help="Directory to triage against the rules")
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose logging"
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_rule_configuration(args.config, carry_over_defaults=not args.no_carry_over)
    except ConfigError as e:
        logger.error(f"Invalid rule configuration: {e}")
        sys.exit(1)

    rule_count = sum(len(rs.rules) for rs in config.rule_sets)
    logger.info(
        f"Configuration is valid: {len(config.rule_sets)} rule sets, {rule_count} rules"
    )

    if args.dump:
        print(dump_configuration(config))

    if args.scan:
        hits = 0
        try:
            for rule_set, rule, record in scan_directory(config, args.scan):
                hits += 1
                print(
                    json.dumps(
                        {
                            "rule_set": rule_set.name,
                            "rule": rule.name,
                            "path": record.local_path,
                            "size": record.size,
                        }
                    )
                )
        except NotADirectoryError as e:
            logger.error(str(e))
            sys.exit(1)
        logger.info(f"Scan complete: {hits} hits")


if __name__ == "__main__":
    main()
