"""
Static instrument registry.

Instruments come from the ``INSTRUMENTS_DATA`` setting, a JSON array of
``{"token", "exchange", "zerodha", "tradingview", "lot"}`` objects. The set is
fixed for the life of the process.
"""

import json
from typing import Dict, Iterable, Iterator, List, Optional

from pydantic import ValidationError

from core.config.settings import Settings
from core.logging import get_logger
from core.schemas.events import Instrument

logger = get_logger("instrument_registry")


class InstrumentRegistry:
    def __init__(self, instruments: Iterable[Instrument] = ()):
        self._by_token: Dict[int, Instrument] = {}
        for instrument in instruments:
            if instrument.token in self._by_token:
                logger.warning("Duplicate instrument token ignored", token=instrument.token,
                               symbol=instrument.tradingsymbol)
                continue
            self._by_token[instrument.token] = instrument

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "InstrumentRegistry":
        """Parse the configured JSON list; missing or malformed data yields an empty registry."""
        if not raw:
            logger.warning("No INSTRUMENTS_DATA configured, using empty instrument list")
            return cls()
        try:
            items = json.loads(raw)
        except ValueError as e:
            logger.error("Failed to parse INSTRUMENTS_DATA", error=str(e))
            return cls()
        if not isinstance(items, list):
            logger.error("INSTRUMENTS_DATA must be a JSON array")
            return cls()

        instruments = []
        for item in items:
            try:
                instruments.append(Instrument.model_validate(item))
            except ValidationError as e:
                logger.error("Skipping invalid instrument", instrument=item, error=str(e))
        registry = cls(instruments)
        logger.info("Instruments loaded", count=len(registry))
        return registry

    @classmethod
    def from_settings(cls, settings: Settings) -> "InstrumentRegistry":
        return cls.from_json(settings.instruments_data)

    def __len__(self) -> int:
        return len(self._by_token)

    def __iter__(self) -> Iterator[Instrument]:
        return iter(self._by_token.values())

    def __contains__(self, token: int) -> bool:
        return token in self._by_token

    def all(self) -> List[Instrument]:
        return list(self._by_token.values())

    def tokens(self) -> List[int]:
        return list(self._by_token)

    def get(self, token: int) -> Optional[Instrument]:
        return self._by_token.get(token)

    def find_by_tradingview(self, symbol: Optional[str]) -> Optional[Instrument]:
        if not symbol:
            return None
        for instrument in self._by_token.values():
            if instrument.tradingview == symbol:
                return instrument
        return None

    def payload(self) -> List[dict]:
        return [i.to_payload() for i in self._by_token.values()]
