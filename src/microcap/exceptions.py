"""Error taxonomy and exit code mapping for the portfolio engine."""

from concurrent.futures import TimeoutError as FuturesTimeoutError


class ConfigError(Exception):
    """Raised when the portfolio configuration is invalid."""
    pass


class DataError(Exception):
    """Raised when market data for a ticker is missing or unusable."""
    pass


class StateError(Exception):
    """Raised when the portfolio state file cannot be written."""
    pass


# Exit codes for CLI
EXIT_SUCCESS = 0           # Successful completion
EXIT_GENERAL_ERROR = 1     # Uncaught/unexpected exceptions
EXIT_CONFIG_ERROR = 2      # Configuration validation failures
EXIT_NETWORK_ERROR = 3     # Network/API errors and fetch timeouts
EXIT_DATA_ERROR = 4        # Data errors that escaped per-ticker recovery
EXIT_STATE_ERROR = 5       # State file could not be persisted


class ExceptionMapper:
    """Maps exceptions to appropriate exit codes."""

    @staticmethod
    def map_to_exit_code(e: Exception) -> int:
        """
        Map an exception to an exit code.

        Args:
            e: The exception to map

        Returns:
            Exit code (0-5)
        """
        # Import here so the mapper works without the Alpaca SDK installed
        try:
            from alpaca.common.exceptions import APIError as AlpacaAPIError
        except ImportError:
            AlpacaAPIError = None

        if isinstance(e, ConfigError):
            return EXIT_CONFIG_ERROR

        elif isinstance(e, StateError):
            return EXIT_STATE_ERROR

        elif isinstance(e, DataError):
            return EXIT_DATA_ERROR

        # Per-ticker fetch timeout
        elif isinstance(e, FuturesTimeoutError):
            return EXIT_NETWORK_ERROR

        elif AlpacaAPIError and isinstance(e, AlpacaAPIError):
            code = getattr(e, 'status_code', None) or getattr(e, 'code', None)
            if code == 422:
                error_msg = str(e).lower()
                if 'no data' in error_msg or 'not found' in error_msg:
                    return EXIT_DATA_ERROR
                return EXIT_CONFIG_ERROR
            elif code in (400, 401, 403):
                return EXIT_CONFIG_ERROR
            return EXIT_NETWORK_ERROR

        elif isinstance(e, (ConnectionError, TimeoutError)):
            return EXIT_NETWORK_ERROR

        # Bad credentials or feed names surface as ValueError from the provider
        elif isinstance(e, (ValueError, KeyError)):
            return EXIT_CONFIG_ERROR

        return EXIT_GENERAL_ERROR
