"""
Entry point for running crossmake as a module.

Usage: python -m crossmake [make arguments...]
"""

from crossmake.cli.main import main

if __name__ == "__main__":
    main()
