from .archiver import HistoryArchiver
from .models import DayRecord, InstrumentDayRecord

__all__ = ["DayRecord", "HistoryArchiver", "InstrumentDayRecord"]
