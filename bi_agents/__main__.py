"""
Entry point for running bi-agents as a module.

This allows the package to be run with: python -m bi_agents
"""

import sys

from bi_agents.cli import main

if __name__ == "__main__":
    sys.exit(main())
