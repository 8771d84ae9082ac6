"""Kitchen Ledger - inventory, production and daily metrics for a restaurant kitchen."""

from .utils.constants import APP_VERSION as __version__  # noqa: F401
