"""Tests for exception mapping."""

import pytest
from concurrent.futures import TimeoutError as FuturesTimeoutError

from microcap.exceptions import (
    ExceptionMapper,
    ConfigError,
    DataError,
    StateError,
    EXIT_GENERAL_ERROR,
    EXIT_CONFIG_ERROR,
    EXIT_NETWORK_ERROR,
    EXIT_DATA_ERROR,
    EXIT_STATE_ERROR
)


def test_config_error_mapping():
    """Test that ConfigError maps to EXIT_CONFIG_ERROR."""
    assert ExceptionMapper.map_to_exit_code(ConfigError("bad")) == EXIT_CONFIG_ERROR


def test_data_error_mapping():
    """Test that DataError maps to EXIT_DATA_ERROR."""
    assert ExceptionMapper.map_to_exit_code(DataError("No data available")) == EXIT_DATA_ERROR


def test_state_error_mapping():
    """Test that StateError maps to EXIT_STATE_ERROR."""
    assert ExceptionMapper.map_to_exit_code(StateError("disk full")) == EXIT_STATE_ERROR


def test_futures_timeout_mapping():
    """Test that concurrent.futures.TimeoutError maps to EXIT_NETWORK_ERROR."""
    error = FuturesTimeoutError("Task timed out")
    assert ExceptionMapper.map_to_exit_code(error) == EXIT_NETWORK_ERROR


def test_connection_error_mapping():
    """Test that ConnectionError maps to EXIT_NETWORK_ERROR."""
    error = ConnectionError("Network connection failed")
    assert ExceptionMapper.map_to_exit_code(error) == EXIT_NETWORK_ERROR


def test_missing_credentials_mapping():
    """Test that the provider's missing-credentials ValueError maps to EXIT_CONFIG_ERROR."""
    error = ValueError("API credentials not found")
    assert ExceptionMapper.map_to_exit_code(error) == EXIT_CONFIG_ERROR


def test_generic_exception_mapping():
    """Test that unexpected exceptions map to EXIT_GENERAL_ERROR."""
    assert ExceptionMapper.map_to_exit_code(RuntimeError("boom")) == EXIT_GENERAL_ERROR


@pytest.mark.parametrize("error_class", [ConfigError, DataError, StateError])
def test_exceptions_are_exceptions(error_class):
    """Test that custom errors can be raised and caught as Exception."""
    with pytest.raises(Exception):
        raise error_class("test")
