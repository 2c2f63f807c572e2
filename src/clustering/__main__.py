"""
Entry point for running cluster detection as a module.

Usage:
    python3 -m src.clustering [--org-id ORG_ID] [--dry-run] [--adaptive]
"""

from .detect import main

if __name__ == '__main__':
    main()
