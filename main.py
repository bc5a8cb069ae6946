"""
Entry point for the Contentful to Strapi migration tool.
"""

import sys

from contentful_to_strapi.migration_tool import ContentfulToStrapiMigrationTool
from contentful_to_strapi.steps import STEPS, select_steps
from contentful_to_strapi.utils.errors import MigrationTimeoutError, PreFlightCheckError
from contentful_to_strapi.utils.pre_flight_checks import (
    run_contentful_pre_flight_checks,
    run_strapi_pre_flight_checks,
)

CONFIG_FILE = "config/migration_config.json"


def main(argv=None):
    """
    Main function to run the Contentful to Strapi migration tool.

    Step names given on the command line override ``migration.steps``.
    """
    argv = sys.argv[1:] if argv is None else argv
    tool = ContentfulToStrapiMigrationTool(config_file=CONFIG_FILE)
    tool.log_message("Starting Contentful to Strapi migration.")

    try:
        steps = select_steps(argv or tool.config["migration"].get("steps"), STEPS)
    except KeyError as e:
        tool.log_message(str(e), level="ERROR")
        return 2
    tool.log_message(f"Steps to run: {', '.join(step.name for step in steps)}", level="DEBUG")

    if not tool.dry_run:
        try:
            run_contentful_pre_flight_checks(tool.config)
            # Empty single types answer 404, so only collections are checked
            collections = [step.collection for step in steps if not step.single]
            run_strapi_pre_flight_checks(tool.config, collections=collections)
        except PreFlightCheckError as e:
            tool.log_message(f"Pre-flight checks failed: {e}", level="ERROR")
            return 1

    try:
        tool.run(steps)
    except MigrationTimeoutError as e:
        tool.log_message(f"Migration stopped: {e}. Run again to continue.", level="ERROR")
        return 3

    tool.log_message("Migration process finished.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
