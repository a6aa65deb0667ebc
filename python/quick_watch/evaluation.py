"""
Outcome evaluation for check results.

Pure functions deciding whether a status code is acceptable and whether a
response size drifted away from recent history.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence


def _matches(status_code: int, pattern: str) -> bool:
    pattern = pattern.strip()
    if pattern == "*":
        return True

    code = str(status_code)

    # "2**" style class match
    if len(pattern) == 3 and pattern[0].isdigit() and pattern[1:] == "**":
        return code[:1] == pattern[0]

    if "-" in pattern:
        low, _, high = pattern.partition("-")
        try:
            return int(low) <= status_code <= int(high)
        except ValueError:
            return False

    return code == pattern


def is_status_allowed(status_code: int, patterns: Sequence[str] | None) -> bool:
    """
    Check a status code against accepted patterns.

    Patterns may be "*" (anything), a class such as "2**", an inclusive
    range such as "200-399", or an exact code. No patterns means "*".

    Args:
        status_code: Status code returned by the target.
        patterns: Accepted patterns.

    Returns:
        True if any pattern matches.
    """
    if not patterns:
        patterns = ["*"]
    return any(_matches(status_code, pattern) for pattern in patterns)


def detect_size_drift(
    history: list[int],
    new_size: int,
    enabled: bool,
    window_size: int,
    threshold: float,
) -> bool:
    """
    Record a response size and report whether it drifted from the mean.

    The new size is appended to ``history`` which is then trimmed from the
    front to ``window_size`` entries. The mean excludes the newest sample.

    Args:
        history: Mutable list of recent sizes, oldest first.
        new_size: Size of the latest response.
        enabled: Whether detection is on; when off history is untouched.
        window_size: Maximum number of samples kept.
        threshold: Relative change that counts as drift (0.5 = 50%).

    Returns:
        True if ``|new - mean| / mean >= threshold``.
    """
    if not enabled:
        return False

    history.append(new_size)
    if window_size > 0 and len(history) > window_size:
        del history[: len(history) - window_size]

    if len(history) < 2:
        return False

    _, change = size_change(history)
    return change is not None and change >= threshold


def size_change(history: Sequence[int]) -> tuple[float, float | None]:
    """
    Compare the newest sample with the mean of the others.

    Returns:
        Tuple of (mean of previous samples, relative change). The change is
        None when there is nothing to compare against or the mean is zero.
    """
    if len(history) < 2:
        return 0.0, None

    previous = history[:-1]
    average = sum(previous) / len(previous)
    if average == 0:
        return average, None

    return average, abs(history[-1] - average) / average
