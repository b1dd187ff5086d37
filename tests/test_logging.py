"""Tests for logging configuration"""

from mev_sandwich.utils.logging import get_logger, setup_logging


def test_setup_logging_default():
    """Test logging setup with default level"""
    setup_logging()
    logger = get_logger("test")

    assert hasattr(logger, "info")
    assert hasattr(logger, "error")


def test_setup_logging_console_renderer():
    """Test logging setup with the console renderer"""
    setup_logging(log_level="DEBUG", json_output=False)
    logger = get_logger()

    logger.debug("console_message", chain="ethereum")


def test_logger_can_log_messages(capsys):
    """Test that bound loggers emit JSON lines with context"""
    setup_logging(log_level="INFO")
    logger = get_logger("test").bind(component="bundle_manager")

    logger.info("bundle_submitted", bundle_id="ethereum_1_abc", chain="ethereum")
    logger.warning("relay_slow", relay="flashbots")

    out = capsys.readouterr().out
    assert "bundle_submitted" in out
    assert '"component": "bundle_manager"' in out


def test_unknown_level_falls_back_to_info():
    """Test that an unknown level name does not raise"""
    setup_logging(log_level="NOPE")
    get_logger().info("still_logging")
