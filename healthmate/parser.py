import logging
import re

from healthmate.schemas import AiSummary

logger = logging.getLogger(__name__)

PARSE_FAILED_PLACEHOLDER = "Parsing failed. Check English summary."

FREE_TEXT_SECTIONS = ("english", "secondary_language")
LIST_SECTIONS = ("key_findings", "abnormal_values", "recommendations", "doctor_questions")

# One leading dash, bullet, number ("1.", "2)", "3") or a star followed by
# whitespace; "*Note*" is emphasis, not a bullet.
LIST_MARKER = re.compile(r"^(?:[-•]|\*(?=\s)|\d+[.)]?)\s*")


def _section_headers(secondary_label: str) -> list[tuple[re.Pattern, str]]:
    # Order matters: the first matching label wins for a given line.
    labels = [
        ("English Summary", "english"),
        (f"{secondary_label} Summary", "secondary_language"),
        ("Key Findings", "key_findings"),
        ("Abnormal Values", "abnormal_values"),
        ("Recommendations", "recommendations"),
        ("Questions for Doctor", "doctor_questions"),
    ]
    return [(re.compile(re.escape(label), re.IGNORECASE), section) for label, section in labels]


def _match_header(line: str, headers: list[tuple[re.Pattern, str]]) -> str | None:
    for pattern, section in headers:
        if pattern.search(line):
            return section
    return None


def parse_analysis_text(text: str, secondary_label: str = "Roman Urdu") -> AiSummary:
    """Split a free-text Gemini reply into the six summary sections.

    Nothing is captured before the first recognized header. A repeated header
    re-opens its section, so later lines append to what is already there.
    Never raises: on any error the raw text comes back as the English summary.
    """
    try:
        headers = _section_headers(secondary_label)
        free_text: dict[str, list[str]] = {name: [] for name in FREE_TEXT_SECTIONS}
        lists: dict[str, list[str]] = {name: [] for name in LIST_SECTIONS}
        current: str | None = None

        for raw_line in text.split("\n"):
            line = raw_line.strip()
            section = _match_header(line, headers)
            if section is not None:
                current = section
                continue
            if not line or line.startswith("**") or current is None:
                continue
            if current in free_text:
                free_text[current].append(line)
            elif LIST_MARKER.match(line):
                item = LIST_MARKER.sub("", line).strip()
                if item:
                    lists[current].append(item)

        return AiSummary(
            english=" ".join(free_text["english"]),
            secondary_language=" ".join(free_text["secondary_language"]),
            **lists,
        )
    except Exception as exc:
        logger.warning("Could not parse analysis text: %s", exc)
        raw = "" if text is None else str(text)
        return AiSummary(english=raw, secondary_language=PARSE_FAILED_PLACEHOLDER)
