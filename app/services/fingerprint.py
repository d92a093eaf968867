import hashlib
from typing import Optional


def lead_fingerprint(
    homeowner_id,
    scan_id=None,
    scan_created_at=None,
    title: Optional[str] = None,
    location: Optional[str] = None,
) -> str:
    """
    Stable sha256 hex digest identifying the source of a lead.

    A scan-backed lead is keyed on homeowner:scan:scan_created_at, a manual
    lead on homeowner:title:location.
    """
    if scan_id is not None:
        source = f"{homeowner_id}:{scan_id}:{_stamp(scan_created_at)}"
    else:
        source = f"{homeowner_id}:{title}:{location}"
    return hashlib.sha256(source.encode("utf-8")).hexdigest()


def _stamp(value) -> str:
    if value is None:
        return ""
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)
