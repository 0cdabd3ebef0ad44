"""Due date parsing."""

from datetime import date, datetime, timedelta

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def parse_due_date(value: str, today: date | None = None) -> date:
    """Parse a due date given as YYYY-MM-DD or a short natural-language phrase.

    Supported phrases: "today", "tomorrow", "next week" and weekday names.
    A weekday resolves to its next occurrence strictly after today.

    Raises:
        ValueError: If the value cannot be understood
    """
    today = today or date.today()
    text = value.strip().lower()

    if text == "today":
        return today
    if text == "tomorrow":
        return today + timedelta(days=1)
    if text == "next week":
        return today + timedelta(days=7)
    if text in WEEKDAYS:
        diff = WEEKDAYS.index(text) - today.weekday()
        if diff <= 0:
            diff += 7
        return today + timedelta(days=diff)

    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value.strip()).date()
    except ValueError as e:
        raise ValueError(f"Could not understand due date '{value}'. Use YYYY-MM-DD.") from e
