"""Command-line interface for morphnorm.

Example Usage
-------------
    # From command line:
    morphnorm --help
    morphnorm join --objects objects.csv --images images.csv -o joined.csv
    morphnorm normalize -i joined.csv -o out/ --strategy per_batch
"""

__version__ = "0.1.0"

from .main import cli, main

__all__ = [
    "__version__",
    "cli",
    "main",
]
