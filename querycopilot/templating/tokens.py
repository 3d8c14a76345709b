"""
Macro tokens recognised inside query text.

The spelling of these tokens is shared with the LLM instructions and with
queries already stored in chat history; renaming any of them breaks that
content.
"""
from __future__ import annotations

import re

TIME_FIELD = "$__timeField"
TIME_FROM = "$__timeFrom"
TIME_TO = "$__timeTo"
TIME_FILTER = "$__timeFilter"
INTERVAL = "$__interval"

ALL_MACROS = (TIME_FILTER, TIME_FIELD, TIME_FROM, TIME_TO, INTERVAL)

# Names without the "$__" prefix, as used for interpolated-variable keys.
MACRO_NAMES = tuple(m[3:] for m in ALL_MACROS)

# Case-sensitive; a trailing word character means some other token
# (e.g. "$__interval_ms") and is not matched.
MACRO_RE = re.compile(r"\$__(" + "|".join(MACRO_NAMES) + r")(?!\w)")
