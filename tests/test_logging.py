import logging

from payment_recon.utils.logging_config import setup_logging


def test_file_handler_keeps_debug_records(tmp_path):
    log_file = tmp_path / "logs" / "recon.log"
    logger = setup_logging(logging.WARNING, log_file=log_file, log_format="%(levelname)s %(message)s")

    logging.getLogger("payment_recon.matching.matcher").debug("tier loaded")
    for handler in logger.handlers:
        handler.flush()

    assert "DEBUG tier loaded" in log_file.read_text()
    logger.handlers = []


def test_repeated_setup_does_not_stack_handlers():
    setup_logging(logging.INFO)
    logger = setup_logging(logging.INFO)

    assert len(logger.handlers) == 1
    logger.handlers = []
