"""Syslog record formatting."""

from datetime import UTC, datetime

FACILITY_USER = 1  # user-level messages
SEVERITY_INFO = 6  # informational


def iso_timestamp(moment: datetime | None = None) -> str:
    """UTC ISO-8601 timestamp with millisecond precision, e.g. 2019-09-23T11:22:33.123Z"""
    moment = moment or datetime.now(UTC)
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def split_lines(message) -> list[str]:
    """Coerce `message` to text and split it into non-empty lines."""
    return [line for line in str(message).split("\n") if line]


def format_record(
    line: str,
    appname: str,
    hostname: str,
    procid: int | str,
    timestamp: datetime | None = None,
) -> str:
    """
    Render one line as a newline-terminated syslog record.

    Example:
        <14> 2019-09-23T11:22:33.123Z web-1 billing[4242]: payment processed
    """
    pri = f"<{FACILITY_USER * 8 + SEVERITY_INFO}>"
    header = f"{iso_timestamp(timestamp)} {hostname} {appname}[{procid}]"
    return f"{pri} {header}: {line}\n"
