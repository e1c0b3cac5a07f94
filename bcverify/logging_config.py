"""
Logging setup for the command-line entry point.

Library modules only create loggers; nothing is configured unless the
CLI (or an embedding application) calls configure_logging().
"""

import logging


def configure_logging(verbose: bool = False) -> None:
    """-v shows verdicts and engine traces (DEBUG); otherwise warnings only."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)
