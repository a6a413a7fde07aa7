"""
Expiry handling for pre-signed S3 download links (X-Amz-Date + X-Amz-Expires).
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlsplit

from varvis_download.constants import URL_EXPIRY_THRESHOLD_MINUTES

AMZ_DATE_FORMAT = '%Y%m%dT%H%M%SZ'


@dataclass(frozen=True)
class UrlExpiration:
    signed_at: datetime
    expires_in_seconds: int
    expires_at: datetime


def parse_s3_url_expiration(url: str) -> UrlExpiration | None:
    """Returns the signing and expiry times of a pre-signed URL, or None if it carries none."""
    try:
        params = parse_qs(urlsplit(url).query)
        amz_date = params.get('X-Amz-Date', [''])[0]
        amz_expires = params.get('X-Amz-Expires', [''])[0]
        if not amz_date or not amz_expires:
            return None
        signed_at = datetime.strptime(amz_date, AMZ_DATE_FORMAT).replace(tzinfo=timezone.utc)
        expires_in_seconds = int(amz_expires)
    except ValueError:
        return None
    return UrlExpiration(
        signed_at=signed_at,
        expires_in_seconds=expires_in_seconds,
        expires_at=signed_at + timedelta(seconds=expires_in_seconds),
    )


def is_url_expiring_soon(
    url: str,
    threshold_minutes: float = URL_EXPIRY_THRESHOLD_MINUTES,
    now: datetime | None = None,
) -> bool:
    """
    True if the URL has expired or expires within the threshold.
    A URL without parsable expiry information is treated as expiring.
    """
    expiration = parse_s3_url_expiration(url)
    if expiration is None:
        return True
    now = now or datetime.now(timezone.utc)
    return now >= expiration.expires_at - timedelta(minutes=threshold_minutes)


def get_url_remaining_seconds(url: str, now: datetime | None = None) -> int | None:
    """Seconds until expiry (negative once expired), or None if the URL carries no expiry."""
    expiration = parse_s3_url_expiration(url)
    if expiration is None:
        return None
    now = now or datetime.now(timezone.utc)
    return math.floor((expiration.expires_at - now).total_seconds())


def format_remaining_time(seconds: int) -> str:
    if seconds < 0:
        return 'expired'
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f'{hours}h {minutes}m'
    if minutes > 0:
        return f'{minutes}m {secs}s'
    return f'{secs}s'
