"""
Entry point for running issue_runner as a module.

Allows running as: python -m issue_runner
"""

from issue_runner.cli import cli_main

if __name__ == "__main__":
    cli_main()
