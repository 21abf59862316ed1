"""Command line entry points for the NF-e utilities."""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Mapping, Sequence

from .access_key import build_access_key, parse_access_key
from .client import DocumentClient
from .config import load_settings
from .errors import NFeError
from .logging import ExcelLogger, ExcelLoggerConfig, ExchangeLog, configure_logging
from .regions import DocumentModel, Region
from .status_codes import describe

CommandCallable = Callable[[list[str] | None], int | None]


@dataclass(frozen=True)
class CommandSpec:
    """Metadata describing a CLI command exposed by :mod:`nfebr.cli`."""

    name: str
    summary: str
    handler: CommandCallable

    def run(self, argv: list[str] | None) -> int:
        """Execute the command and normalise the resulting exit code."""

        try:
            result = self.handler(argv)
        except NFeError as exc:
            print(f"{exc.kind}: {exc.message}", file=sys.stderr)
            return 1
        except SystemExit as exc:  # argparse termina com sys.exit
            code = exc.code
            if code is None:
                return 0
            if isinstance(code, int):
                return code
            print(str(code), file=sys.stderr)
            return 1
        if result is None:
            return 0
        return int(result)


def _year_month(value: str) -> datetime:
    try:
        return datetime.strptime(value, "%Y-%m")
    except ValueError:
        raise argparse.ArgumentTypeError(f"data inválida (use AAAA-MM): {value!r}") from None


def generate_key(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="nfebr gerar-chave", description="Gera uma chave de acesso de 44 dígitos.")
    parser.add_argument("--uf", required=True, help="Sigla ou código IBGE da UF do emitente")
    parser.add_argument("--emitente", required=True, help="CNPJ (14) ou CPF (11) do emitente")
    parser.add_argument("--modelo", default="55", help="55 (NF-e) ou 65 (NFC-e)")
    parser.add_argument("--serie", required=True)
    parser.add_argument("--numero", required=True)
    parser.add_argument("--tp-emis", default="1", help="Tipo de emissão (1 normal, 6 SVC-AN, 7 SVC-RS...)")
    parser.add_argument("--data", type=_year_month, default=None, help="Ano e mês de emissão (AAAA-MM)")
    parser.add_argument("--cnf", default=None, help="Código numérico (8 dígitos); aleatório por omissão")
    parser.add_argument("--formatado", action="store_true", help="Agrupar em blocos de 4 dígitos")
    args = parser.parse_args(argv)

    key = build_access_key(
        Region.parse(args.uf),
        args.emitente,
        DocumentModel.parse(args.modelo),
        args.serie,
        args.numero,
        args.tp_emis,
        issue_date=args.data,
        random_code=args.cnf,
    )
    print(key.formatted if args.formatado else key.digits)
    return 0


def validate_key(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="nfebr validar-chave", description="Valida uma chave de acesso.")
    parser.add_argument("chave", help="Chave de 44 dígitos (espaços são ignorados)")
    args = parser.parse_args(argv)

    key = parse_access_key(args.chave.replace(" ", ""))
    print(f"Chave válida: {key.formatted}")
    for name, value in key.as_dict().items():
        print(f"  {name}: {value}")
    return 0


def _network_parser(prog: str, description: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog, description=description)
    parser.add_argument("--excel-log", type=Path, default=None, help="Exportar as chamadas SOAP para .xlsx")
    return parser


def _client(log: ExchangeLog) -> DocumentClient:
    settings = load_settings()
    configure_logging(settings.log_dir)
    return DocumentClient.from_settings(settings, exchange_log=log)


def _export(log: ExchangeLog, destination: Path | None) -> None:
    if destination is None:
        return
    path = ExcelLogger(ExcelLoggerConfig(filename=str(destination))).write_rows(log)
    print(f"Registo de {len(log)} chamada(s) guardado em: {path}")


def service_status(argv: list[str] | None = None) -> int:
    parser = _network_parser("nfebr status", "Consulta o estado do serviço de autorização.")
    args = parser.parse_args(argv)

    log = ExchangeLog()
    try:
        result = _client(log).status()
    except NFeError:
        _export(log, args.excel_log)
        raise
    print(f"{result.status_code} - {result.status_message or describe(result.status_code)}")
    _export(log, args.excel_log)
    return 0 if result.online else 2


def query_key(argv: list[str] | None = None) -> int:
    parser = _network_parser("nfebr consultar", "Consulta a situação de uma NF-e pela chave de acesso.")
    parser.add_argument("chave")
    args = parser.parse_args(argv)

    log = ExchangeLog()
    try:
        result = _client(log).query_key(args.chave.replace(" ", ""))
    except NFeError:
        _export(log, args.excel_log)
        raise
    print(f"{result.status_code} - {result.status_message or describe(result.status_code)}")
    if result.protocol is not None and result.protocol.protocol:
        print(f"Protocolo: {result.protocol.protocol}")
    for event in result.events:
        print(f"Evento {event.event_type} seq. {event.sequence}: {event.status_code} - {event.status_message}")
    _export(log, args.excel_log)
    return 0


_COMMANDS: tuple[CommandSpec, ...] = (
    CommandSpec(name="gerar-chave", summary="Gera uma chave de acesso com dígito verificador.", handler=generate_key),
    CommandSpec(name="validar-chave", summary="Valida formato e dígito verificador de uma chave.", handler=validate_key),
    CommandSpec(name="status", summary="Consulta o estado do serviço da SEFAZ.", handler=service_status),
    CommandSpec(name="consultar", summary="Consulta a situação de um documento pela chave.", handler=query_key),
)

_COMMAND_INDEX: Mapping[str, CommandSpec] = {spec.name: spec for spec in _COMMANDS}


def available_commands() -> Iterable[CommandSpec]:
    """Return the commands registered in the CLI."""

    return _COMMANDS


def build_parser() -> argparse.ArgumentParser:
    """Return the base argument parser shared across commands."""

    parser = argparse.ArgumentParser(prog="nfebr", description="Ferramentas NF-e / NFC-e")
    subparsers = parser.add_subparsers(dest="command", metavar="comando")
    subparsers.required = True

    for spec in _COMMANDS:
        subparser = subparsers.add_parser(
            spec.name,
            help=spec.summary,
            description=spec.summary,
            add_help=False,
        )
        subparser.add_argument("args", nargs=argparse.REMAINDER, help=argparse.SUPPRESS)

    return parser


def run(command: str, argv: Sequence[str] | None = None) -> int:
    """Execute *command* forwarding ``argv`` to the underlying handler."""

    spec = _COMMAND_INDEX.get(command)
    if spec is None:
        raise ValueError(f"Comando desconhecido: {command}")
    return spec.run(list(argv or []))


def main(argv: Sequence[str] | None = None) -> int:
    """Execute the command line interface."""

    args = list(sys.argv[1:] if argv is None else argv)
    if args and args[0] in _COMMAND_INDEX:
        return run(args[0], args[1:])

    # Sem comando reconhecido: o argparse mostra a ajuda ou o erro e termina.
    build_parser().parse_args(args)
    return 2


if __name__ == "__main__":  # pragma: no cover - execução directa
    raise SystemExit(main())
