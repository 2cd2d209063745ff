#!/usr/bin/env python3
"""
Wrapper script to run the datadog-operator with Kopf.

Launches Kopf's CLI with all standard arguments, with the operator
module (and its handlers) already imported.

Usage:
    python run_operator.py [any kopf run arguments]

Examples:
    python run_operator.py --verbose --all-namespaces
    python run_operator.py -n my-namespace --log-format=json
"""

import sys


def main():
    import kopf.cli

    # Import the operator module (which registers handlers via decorators)
    import datadog_operator.app  # noqa: F401

    # Inject 'run' as the command since we're calling the CLI directly
    # This makes it behave as if user called: kopf run <args>
    sys.argv.insert(1, "run")

    # Call Kopf's CLI main entry point - it handles all argument parsing
    return kopf.cli.main(prog_name="kopf")


if __name__ == "__main__":
    sys.exit(main())
