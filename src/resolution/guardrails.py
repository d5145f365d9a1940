from typing import Iterable, Optional


def detect_escalation(message: str, keywords: Iterable[str]) -> Optional[str]:
    """Return the first configured keyword contained in ``message``, ignoring case.

    Keywords are scanned in configuration order so the same message always
    reports the same keyword.
    """
    lowered = message.lower()
    for keyword in keywords:
        needle = keyword.strip().lower()
        if needle and needle in lowered:
            return keyword
    return None
