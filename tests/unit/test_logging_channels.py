import logging

from core.logging.channels import LogChannel, get_channel_for_component
from core.logging.enhanced_logging import ChannelFilter, make_redaction_processor


def _record(name="threshold_desk", msg=None):
    return logging.LogRecord(name, logging.INFO, __file__, 1, msg if msg is not None else "plain", None, None)


def test_channel_filter_matches_structlog_event_dict():
    trading = ChannelFilter(expected_channel="trading")

    assert trading.filter(_record(msg={"event": "FSM ENTRY", "channel": "trading"}))
    assert not trading.filter(_record(msg={"event": "tick", "channel": "market_data"}))


def test_channel_filter_falls_back_to_logger_prefix():
    market = ChannelFilter(expected_channel="market_data", allowed_logger_prefixes=["kiteconnect"])

    assert market.filter(_record(name="kiteconnect.ticker"))
    assert not market.filter(_record(name="uvicorn.error"))


def test_redaction_masks_nested_secrets():
    redact = make_redaction_processor(["api_secret", "access_token"])

    out = redact(None, "info", {"event": "saved", "account": {"api_secret": "s", "name": "Main"},
                                "tokens": [{"ACCESS_TOKEN": "t"}]})

    assert out["account"] == {"api_secret": "[REDACTED]", "name": "Main"}
    assert out["tokens"] == [{"ACCESS_TOKEN": "[REDACTED]"}]


def test_component_channels():
    assert get_channel_for_component("state_machine") == LogChannel.TRADING
    assert get_channel_for_component("market_feed") == LogChannel.MARKET_DATA
    assert get_channel_for_component("accounts") == LogChannel.AUDIT
    assert get_channel_for_component("application") == LogChannel.APPLICATION
