"""Current date/time formatting for the get_current_date tool."""

import datetime as dt
from typing import Optional

_WEEKDAYS = {
    "en": ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"],
    "es": ["lunes", "martes", "miércoles", "jueves", "viernes", "sábado", "domingo"],
}
_MONTHS = {
    "en": ["January", "February", "March", "April", "May", "June", "July",
           "August", "September", "October", "November", "December"],
    "es": ["enero", "febrero", "marzo", "abril", "mayo", "junio", "julio",
           "agosto", "septiembre", "octubre", "noviembre", "diciembre"],
}


def format_current_date(now: Optional[dt.datetime] = None, language: str = "en") -> str:
    """Long-form local date with weekday and HH:MM, e.g. ``Sunday, October 18, 2026, 09:05``."""
    now = now or dt.datetime.now().astimezone()
    lang = language if language in _WEEKDAYS else "en"
    weekday = _WEEKDAYS[lang][now.weekday()]
    month = _MONTHS[lang][now.month - 1]
    clock = f"{now.hour:02d}:{now.minute:02d}"
    if lang == "es":
        return f"{weekday}, {now.day} de {month} de {now.year}, {clock}"
    return f"{weekday}, {month} {now.day}, {now.year}, {clock}"
