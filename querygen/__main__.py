# File: querygen/__main__.py
"""
NexaFlow QueryGen - Module entry point.

Allows running the generator directly via::

    python -m querygen --definition models.yaml --output ./sql
"""

from __future__ import annotations


def main() -> None:
    """Delegate to the CLI main function."""
    from querygen.cli import cli_main
    cli_main()


if __name__ == "__main__":
    main()
