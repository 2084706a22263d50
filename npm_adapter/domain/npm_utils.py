from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Optional

ASSET_SEPARATOR = "/-/"


def meta_key(package_name: str) -> str:
    return f"{package_name}/meta.json"


def asset_key(package_name: str, filename: str) -> str:
    return f"{package_name}{ASSET_SEPARATOR}{filename}"


def asset_prefix(package_name: str) -> str:
    return f"{package_name}{ASSET_SEPARATOR}"


def relative_tarball(package_name: str, tarball: str) -> str:
    """
    Reduce a tarball reference to the repository-relative form
    ``/<package>/-/<file>``, dropping any scheme, host or path prefix the
    client put in front of it.
    """
    if ASSET_SEPARATOR in tarball:
        filename = tarball.split(ASSET_SEPARATOR, 1)[1]
    else:
        filename = tarball.rstrip("/").rsplit("/", 1)[-1]
    return f"/{asset_key(package_name, filename)}"


def package_of_asset(path: str) -> Optional[str]:
    """Package name an asset path belongs to, or None if it is not an asset path."""
    if ASSET_SEPARATOR not in path:
        return None
    return path.split(ASSET_SEPARATOR, 1)[0].strip("/") or None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def http_date(moment: datetime) -> str:
    return format_datetime(moment.astimezone(timezone.utc), usegmt=True)


def npm_timestamp(moment: datetime) -> str:
    """ISO-8601 with millisecond precision and a 'Z' suffix, as the npm registry writes it."""
    utc = moment.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"
