"""
Entry point for running the service CLI as a module.

Usage:
    python -m paylink_api
"""

from paylink_api.cli import main

if __name__ == "__main__":
    main()
