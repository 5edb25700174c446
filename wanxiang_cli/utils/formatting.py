"""
Helper functions for formatting data into human-readable strings.
"""


def format_size(bytes_size: int | None) -> str:
    """Formats bytes into a human-readable size string (e.g., '145.3 MB')."""
    if not bytes_size or bytes_size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    size = float(bytes_size)
    i = 0
    while size >= 1024 and i < len(units) - 1:
        size /= 1024
        i += 1
    return f"{size:.1f} {units[i]}"


def format_duration(seconds: float) -> str:
    """
    Formats a duration in seconds into a human-readable string (e.g., '2h 34m 12s').
    """
    s = int(seconds)
    hours, remainder = divmod(s, 3600)
    minutes, secs = divmod(remainder, 60)
    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def format_speed(bytes_per_second: float | None) -> str:
    if not bytes_per_second or bytes_per_second <= 0:
        return "-"
    return f"{format_size(int(bytes_per_second))}/s"


def short_identifier(remote_identifier: str | None, length: int = 12) -> str:
    """Shortens long content hashes for display."""
    value = (remote_identifier or "").strip()
    if len(value) > length + 3 and ":" not in value:
        return value[:length] + "…"
    return value or "-"
