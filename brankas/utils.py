# brankas/utils.py
import datetime
from urllib.parse import urlparse

STATUS_BADGES = {
    'active': 'badge-green',
    'completed': 'badge-gray',
    'expired': 'badge-red',
}


def parse_timestamp(value):
    """
    Parse an ISO-8601 timestamp as sent by the backend.
    Returns an aware datetime (UTC when no offset is given), or None.
    """
    if not value:
        return None
    if isinstance(value, datetime.datetime):
        parsed = value
    else:
        text = str(value).replace('Z', '+00:00')
        try:
            parsed = datetime.datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def format_date(value, long=False):
    parsed = parse_timestamp(value)
    if parsed is None:
        return 'N/A'
    if long:
        return parsed.strftime('%A, %d %B %Y')
    return parsed.strftime('%d %b %Y')


def format_datetime(value):
    parsed = parse_timestamp(value)
    if parsed is None:
        return 'N/A'
    return parsed.strftime('%d %b %Y %H:%M')


def time_left(end_date, now=None):
    """'2d 5h left', '5h 12m left', '45m left' or 'Expired'."""
    end = parse_timestamp(end_date)
    if end is None:
        return 'N/A'
    now = now or datetime.datetime.now(datetime.timezone.utc)
    remaining = end - now
    if remaining.total_seconds() <= 0:
        return 'Expired'
    days = remaining.days
    hours = remaining.seconds // 3600
    minutes = (remaining.seconds % 3600) // 60
    parts = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0:
        parts.append(f"{hours}h")
    if days == 0:
        parts.append(f"{minutes}m")
    return " ".join(parts) + " left"


def status_badge(status):
    return STATUS_BADGES.get((status or '').lower(), 'badge-yellow')


def money(value):
    try:
        return f"${float(value or 0):,.2f}"
    except (TypeError, ValueError):
        return '$0.00'


def is_internal_path(target):
    """True for a relative path on this site (no scheme, no host, no '//')."""
    if not target or not target.startswith('/') or target.startswith(('//', '/\\')):
        return False
    parsed = urlparse(target)
    return not parsed.scheme and not parsed.netloc


def register_template_filters(app):
    app.add_template_filter(format_date, 'date')
    app.add_template_filter(format_datetime, 'datetime')
    app.add_template_filter(time_left, 'time_left')
    app.add_template_filter(status_badge, 'badge')
    app.add_template_filter(money, 'money')
