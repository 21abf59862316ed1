"""Registo da aplicação e exportação das trocas com a SEFAZ para Excel.

:func:`configure_logging` prepara o ficheiro rotativo partilhado por todos os
``nfebr.*`` loggers. :class:`ExchangeLog` acumula um resumo de cada chamada
SOAP e :class:`ExcelLogger` grava esses resumos numa folha :mod:`openpyxl`.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, Iterator, Protocol, Sequence

LOG_FILENAME = "nfebr.log"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

EXCHANGE_COLUMNS = ("Data", "Serviço", "URL", "Tentativas", "HTTP", "Resultado", "Duração (s)")


def configure_logging(log_dir: str | Path, *, level: int = logging.INFO) -> logging.Logger:
    """Attach a rotating file handler to the ``nfebr`` logger (once)."""

    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    logger = logging.getLogger("nfebr")
    if not logger.handlers:
        handler = RotatingFileHandler(
            directory / LOG_FILENAME,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(level)
        logger.propagate = False

    logging.captureWarnings(True)
    return logger


class RowLike(Protocol):
    """Protocolo para linhas serializáveis em formato tabular."""

    def as_cells(self) -> Iterable[object]:
        """Devolve os valores ordenados a escrever na folha."""


@dataclass(frozen=True, slots=True)
class ExchangeRecord:
    """Resumo de uma chamada SOAP (sem o conteúdo XML)."""

    service: str
    url: str
    attempts: int
    status: int | None
    outcome: str
    elapsed: float
    recorded_at: datetime = field(default_factory=datetime.now)

    def as_cells(self) -> list[object]:
        return [
            self.recorded_at.strftime("%Y-%m-%d %H:%M:%S"),
            self.service,
            self.url,
            self.attempts,
            "" if self.status is None else self.status,
            self.outcome,
            round(self.elapsed, 3),
        ]


class ExchangeLog:
    """Thread-safe list of :class:`ExchangeRecord` entries."""

    def __init__(self) -> None:
        self._records: list[ExchangeRecord] = []
        self._lock = threading.Lock()

    def append(self, record: ExchangeRecord) -> None:
        with self._lock:
            self._records.append(record)

    def records(self) -> list[ExchangeRecord]:
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __iter__(self) -> Iterator[ExchangeRecord]:
        return iter(self.records())


@dataclass(slots=True)
class ExcelLoggerConfig:
    """Configuração usada pelo :class:`ExcelLogger`."""

    columns: Sequence[str] = EXCHANGE_COLUMNS
    filename: str = "nfebr-exchanges.xlsx"
    sheet_title: str = "Log"


class ExcelLogger:
    """Grava registos em Excel utilizando :mod:`openpyxl`.

    Cada chamada a :meth:`write_rows` cria um novo *workbook* com o cabeçalho
    de :class:`ExcelLoggerConfig` seguido das linhas recebidas.
    """

    def __init__(self, config: ExcelLoggerConfig | None = None) -> None:
        self.config = config or ExcelLoggerConfig()

    def write_rows(self, rows: Iterable[RowLike | Iterable[object]]) -> Path:
        """Persistir ``rows`` num ficheiro Excel e devolver o caminho final."""

        from openpyxl import Workbook

        destination = Path(self.config.filename)
        destination.parent.mkdir(parents=True, exist_ok=True)

        workbook = Workbook()
        worksheet = workbook.active
        worksheet.title = self.config.sheet_title

        if self.config.columns:
            worksheet.append(list(self.config.columns))

        for row in rows:
            if hasattr(row, "as_cells"):
                cells = list(row.as_cells())  # type: ignore[union-attr]
            else:
                cells = list(row)  # type: ignore[arg-type]
            worksheet.append(cells)

        workbook.save(destination)
        return destination


__all__ = [
    "LOG_FILENAME",
    "LOG_FORMAT",
    "EXCHANGE_COLUMNS",
    "configure_logging",
    "RowLike",
    "ExchangeRecord",
    "ExchangeLog",
    "ExcelLoggerConfig",
    "ExcelLogger",
]
