"""Microcap portfolio engine - daily order suggestions for a fixed multi-position strategy."""

__version__ = "1.0.0"

import logging

# Library stays quiet unless the application configures logging
logging.getLogger(__name__).addHandler(logging.NullHandler())
