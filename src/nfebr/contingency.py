"""Process-wide contingency flag (SVC-AN / SVC-RS).

Enquanto a contingência está activa o cliente envia os documentos do modelo
55 para o autorizador virtual correspondente e gera as chaves com o
``tpEmis`` do modo escolhido. O estado é guardado atrás de um
:class:`threading.Lock`; activar ou desactivar duas vezes é um erro.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from .errors import ConfigurationError, ContingencyAlreadyActive, ContingencyNotActive, InvalidField, NFeError
from .events import validate_text_length
from .messages import BRASILIA, format_timestamp
from .regions import EmissionType, Region

LOGGER = logging.getLogger("nfebr.contingency")


class ContingencyMode(Enum):
    SVCAN = ("SVCAN", EmissionType.SVC_AN, "SVC-AN")
    SVCRS = ("SVCRS", EmissionType.SVC_RS, "SVC-RS")

    def __init__(self, authorizer: str, emission_type: EmissionType, label: str) -> None:
        self.authorizer = authorizer
        self.emission_type = emission_type
        self.label = label

    @classmethod
    def parse(cls, value: "ContingencyMode | str") -> "ContingencyMode":
        if isinstance(value, ContingencyMode):
            return value
        text = str(value).strip().upper().replace("-", "").replace("_", "")
        try:
            return cls[text]
        except KeyError:
            raise InvalidField("mode", f"Modo de contingência desconhecido: {value!r}") from None


# Regions whose SEFAZ delegates contingency to SVC-RS; every other one uses SVC-AN.
_SVCRS_REGIONS = frozenset(
    {Region.AM, Region.BA, Region.GO, Region.MA, Region.MS, Region.MT, Region.PE, Region.PR}
)


def default_mode_for(region: Region | int | str) -> ContingencyMode:
    region = Region.parse(region)
    return ContingencyMode.SVCRS if region in _SVCRS_REGIONS else ContingencyMode.SVCAN


@dataclass(frozen=True)
class ContingencyState:
    """Snapshot of the flag; inactive states carry no mode."""

    active: bool = False
    mode: ContingencyMode | None = None
    reason: str = ""
    activated_at: datetime | None = None

    @property
    def emission_type(self) -> EmissionType:
        return self.mode.emission_type if self.active and self.mode else EmissionType.NORMAL

    @property
    def authorizer(self) -> str | None:
        return self.mode.authorizer if self.active and self.mode else None

    def info(self) -> dict[str, str]:
        """Values for ``ide/tpEmis``, ``ide/dhCont`` and ``ide/xJust`` of new documents."""

        if not self.active:
            return {"tpEmis": str(int(EmissionType.NORMAL))}
        return {
            "tpEmis": str(int(self.emission_type)),
            "dhCont": format_timestamp(self.activated_at),
            "xJust": self.reason,
        }

    def as_dict(self) -> dict[str, Any]:
        return {
            "active": self.active,
            "mode": self.mode.name if self.mode else None,
            "reason": self.reason,
            "activated_at": self.activated_at.isoformat() if self.activated_at else None,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ContingencyState":
        if not isinstance(payload, dict):
            raise ConfigurationError("Estado de contingência deve ser um objecto JSON")
        if not payload.get("active"):
            return cls()
        try:
            return cls(
                active=True,
                mode=ContingencyMode.parse(payload["mode"]),
                reason=validate_text_length(payload.get("reason"), field_name="reason"),
                activated_at=datetime.fromisoformat(payload["activated_at"]),
            )
        except (KeyError, TypeError, ValueError, NFeError) as exc:
            raise ConfigurationError(f"Estado de contingência inválido: {exc}") from exc


class ContingencyManager:
    """Guard the contingency flag against concurrent activate/deactivate."""

    def __init__(self, region: Region | int | str | None = None) -> None:
        self.region = Region.parse(region) if region is not None else None
        self._lock = threading.Lock()
        self._state = ContingencyState()

    def activate(
        self,
        reason: str,
        mode: ContingencyMode | str | None = None,
        *,
        region: Region | int | str | None = None,
        now: datetime | None = None,
    ) -> ContingencyState:
        reason = validate_text_length(reason, field_name="reason")
        if mode is not None:
            selected = ContingencyMode.parse(mode)
        else:
            target = region if region is not None else self.region
            if target is None:
                raise InvalidField("mode", "Indique o modo de contingência ou a região do emitente")
            selected = default_mode_for(target)

        moment = now or datetime.now(BRASILIA)
        with self._lock:
            if self._state.active:
                raise ContingencyAlreadyActive(
                    f"Contingência {self._state.mode.label} já está activa",  # type: ignore[union-attr]
                    mode=self._state.mode.name if self._state.mode else None,
                )
            self._state = ContingencyState(active=True, mode=selected, reason=reason, activated_at=moment)
            state = self._state
        LOGGER.warning("Contingência %s activada: %s", selected.label, reason)
        return state

    def deactivate(self) -> ContingencyState:
        """Return to normal emission; returns the state that was active."""

        with self._lock:
            if not self._state.active:
                raise ContingencyNotActive("Contingência não está activa")
            previous = self._state
            self._state = ContingencyState()
        LOGGER.info("Contingência %s desactivada", previous.mode.label if previous.mode else "")
        return previous

    def is_active(self) -> bool:
        with self._lock:
            return self._state.active

    @property
    def state(self) -> ContingencyState:
        with self._lock:
            return self._state

    def dumps(self) -> str:
        return json.dumps(self.state.as_dict(), ensure_ascii=False)

    def loads(self, text: str) -> ContingencyState:
        """Replace the current state with a JSON snapshot from :meth:`dumps`."""

        try:
            payload = json.loads(text) if text.strip() else {}
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Estado de contingência não é JSON válido: {exc}") from exc
        state = ContingencyState.from_dict(payload)
        with self._lock:
            self._state = state
        return state

    def save(self, path: str | Path) -> Path:
        destination = Path(path)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(self.dumps(), encoding="utf-8")
        return destination

    def load(self, path: str | Path) -> ContingencyState:
        source = Path(path)
        if not source.exists():
            raise ConfigurationError(f"Ficheiro de contingência '{source}' não encontrado", path=str(source))
        return self.loads(source.read_text(encoding="utf-8"))


__all__ = [
    "ContingencyMode",
    "ContingencyState",
    "ContingencyManager",
    "default_mode_for",
]
