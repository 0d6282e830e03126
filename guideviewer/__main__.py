"""
Entry point for running guideviewer as a module.

Usage:
    python -m guideviewer --help
    python -m guideviewer export <guide-id> --output guide.json
    python -m guideviewer backup create
"""

from guideviewer.cli import cli

if __name__ == "__main__":
    cli()
