"""
Webhook signal normalization.

Charting alerts arrive either as JSON objects::

    {"symbol": "NIFTY1!", "intent": "BUY", "stoppx": 22150.5}

(``sym``, ``side``, ``stopPx`` and ``price`` are accepted as alternates) or
as free text such as ``"Entry sym=NIFTY1! stopPx=22150.5"`` where ``Entry``
means BUY and ``Exit`` means SELL.
"""

import re
from typing import Any, Mapping, Optional, Union

from core.schemas.events import SignalIntent, TradeSignal
from core.utils.exceptions import SignalValidationError

_STOP_RE = re.compile(r"stopPx\s*=\s*([\d.]+)", re.IGNORECASE)
_SYMBOL_RE = re.compile(r"sym\s*=\s*(\S+)", re.IGNORECASE)


def parse_signal(body: Union[Mapping[str, Any], str, bytes]) -> TradeSignal:
    if isinstance(body, Mapping):
        return _parse_mapping(body)
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        return _parse_text(body)
    raise SignalValidationError("Unsupported signal payload", details={"type": type(body).__name__})


def _parse_mapping(body: Mapping[str, Any]) -> TradeSignal:
    symbol = body.get("symbol") or body.get("sym")
    return TradeSignal(
        symbol=str(symbol) if symbol else None,
        intent=_intent(body.get("intent") or body.get("side")),
        stoppx=_price(body.get("stoppx") or body.get("stopPx") or body.get("price")),
    )


def _parse_text(text: str) -> TradeSignal:
    if "Entry" in text:
        intent = SignalIntent.BUY
    elif "Exit" in text:
        intent = SignalIntent.SELL
    else:
        intent = SignalIntent.UNKNOWN

    stop = _STOP_RE.search(text)
    symbol = _SYMBOL_RE.search(text)
    return TradeSignal(
        symbol=symbol.group(1) if symbol else None,
        intent=intent,
        stoppx=_price(stop.group(1)) if stop else None,
    )


def _intent(value: Any) -> SignalIntent:
    if not value:
        return SignalIntent.UNKNOWN
    try:
        return SignalIntent(str(value).strip().upper())
    except ValueError:
        return SignalIntent.UNKNOWN


def _price(value: Any) -> Optional[float]:
    # zero and unparsable prices mean "no stop price"
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if price != price or price == 0:
        return None
    return price
