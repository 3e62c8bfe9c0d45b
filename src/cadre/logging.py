"""Console logging setup for the CLI."""

import logging

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(level: str = "WARNING", rich: bool = True) -> None:
    """Configure the ``cadre`` logger hierarchy.

    Library code only creates module loggers; applications decide where
    records go. The CLI calls this once at startup.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ERROR)
        rich: Render records with rich instead of plain text
    """
    root = logging.getLogger("cadre")
    root.setLevel(level.upper())

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler: logging.Handler
    if rich:
        handler = RichHandler(console=Console(stderr=True), show_path=False, markup=False)
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )

    root.addHandler(handler)
    root.propagate = False
