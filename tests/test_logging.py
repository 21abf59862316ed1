from __future__ import annotations

import logging

import pytest
from openpyxl import load_workbook

from nfebr.logging import (
    EXCHANGE_COLUMNS,
    LOG_FILENAME,
    ExcelLogger,
    ExcelLoggerConfig,
    ExchangeLog,
    ExchangeRecord,
    configure_logging,
)


@pytest.fixture
def clean_logger():
    logger = logging.getLogger("nfebr")
    saved = list(logger.handlers)
    for handler in saved:
        logger.removeHandler(handler)
    yield logger
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    for handler in saved:
        logger.addHandler(handler)
    logger.propagate = True


def test_configure_logging_writes_to_file(tmp_path, clean_logger) -> None:
    logger = configure_logging(tmp_path / "logs")
    logging.getLogger("nfebr.client").info("chamada enviada")
    for handler in logger.handlers:
        handler.flush()

    content = (tmp_path / "logs" / LOG_FILENAME).read_text(encoding="utf-8")
    assert "INFO [nfebr.client] chamada enviada" in content
    assert logger.propagate is False


def test_configure_logging_is_idempotent(tmp_path, clean_logger) -> None:
    configure_logging(tmp_path)
    configure_logging(tmp_path)

    assert len(clean_logger.handlers) == 1


def test_exchange_log_and_excel_export(tmp_path) -> None:
    log = ExchangeLog()
    log.append(ExchangeRecord("status", "https://sefaz.test/ws", 1, 200, "ok", 0.12345))
    log.append(ExchangeRecord("event_reception", "https://sefaz.test/ev", 3, None, "timeout", 3.5))
    destination = tmp_path / "out" / "trocas.xlsx"

    path = ExcelLogger(ExcelLoggerConfig(filename=str(destination))).write_rows(log)

    assert path == destination
    worksheet = load_workbook(path).active
    rows = list(worksheet.iter_rows(values_only=True))
    assert worksheet.title == "Log"
    assert rows[0] == EXCHANGE_COLUMNS
    assert rows[1][1:] == ("status", "https://sefaz.test/ws", 1, 200, "ok", 0.123)
    assert rows[2][4] in (None, "")
    assert rows[2][5] == "timeout"


def test_excel_logger_accepts_plain_rows(tmp_path) -> None:
    config = ExcelLoggerConfig(columns=("a", "b"), filename=str(tmp_path / "plain.xlsx"), sheet_title="Dados")

    path = ExcelLogger(config).write_rows([(1, 2), ["x", "y"]])

    worksheet = load_workbook(path)["Dados"]
    assert [row for row in worksheet.iter_rows(values_only=True)] == [("a", "b"), (1, 2), ("x", "y")]
