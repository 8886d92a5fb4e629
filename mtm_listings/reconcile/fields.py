"""Field-level normalization between analysis output and the editable draft."""
import re
from typing import Iterable, Optional

# 2-4 letter reporting mark, optional separator, then the equipment number
REPORTING_MARK_RE = re.compile(r"^\s*[A-Za-z]{2,4}[\s#.\-]*(?=\d)")

RUNS_WELL = "Runs well"
NOT_APPLICABLE = "N/A"
RUNS_WELL_MIN_GRADE = 6

PAPERWORK_INCLUDED = "Included"
PAPERWORK_NOT_INCLUDED = "Not Included"


def normalize_road_number(raw: Optional[str]) -> Optional[str]:
    """Strip a reporting-mark prefix: "BN1574" -> "1574", "UP 1234" -> "1234".

    Never turns a non-empty value into an empty one.
    """
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return raw
    stripped = REPORTING_MARK_RE.sub("", value, count=1).strip()
    return stripped or value


def paperwork_label(flag: Optional[bool]) -> Optional[str]:
    if flag is None:
        return None
    return PAPERWORK_INCLUDED if flag else PAPERWORK_NOT_INCLUDED


def derive_running_condition(condition: Optional[int], current: str = "") -> str:
    """Keep an explicit value; otherwise derive one from the condition grade."""
    if current and current.strip():
        return current
    if condition is not None and condition >= RUNS_WELL_MIN_GRADE:
        return RUNS_WELL
    return NOT_APPLICABLE


def lines_to_list(text: str) -> list[str]:
    """Newline-delimited text to an ordered list. Blank lines are dropped, duplicates kept."""
    return [line.strip() for line in text.splitlines() if line.strip()]


def list_to_lines(items: Iterable[str]) -> str:
    return "\n".join(items)
