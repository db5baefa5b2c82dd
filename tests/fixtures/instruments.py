"""Instrument set shared by the unit tests: two NFO futures and one BSE future."""

SAMPLE_INSTRUMENTS = [
    {"token": 101, "exchange": "NFO", "zerodha": "NIFTY24JANFUT", "tradingview": "NIFTY1!", "lot": 50},
    {"token": 202, "exchange": "NFO", "zerodha": "BANKNIFTY24JANFUT", "tradingview": "BANKNIFTY1!", "lot": 15},
    {"token": 303, "exchange": "BSE", "zerodha": "SENSEX24JANFUT", "tradingview": "SENSEX1!", "lot": 10},
]
