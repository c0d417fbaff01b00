from typing import Optional

VALID_LOAN_STATUSES = {"OPEN", "CLOSED"}
VALID_ASSET_STATUSES = {"EN_STOCK", "PRETE", "HS", "REPARATION"}


def blank_to_none(value: Optional[str]) -> Optional[str]:
    if value == "":
        return None
    return value


def normalize_loan_status(status: Optional[str]) -> Optional[str]:
    status = (status or "").upper()
    if status in VALID_LOAN_STATUSES:
        return status
    return None


def normalize_asset_status(status: Optional[str]) -> Optional[str]:
    status = (status or "").upper()
    if status in VALID_ASSET_STATUSES:
        return status
    return None


def normalize_limit(limit: int, *, min_value: int = 1, max_value: int = 500) -> int:
    if limit < min_value:
        return min_value
    if limit > max_value:
        return max_value
    return limit


def normalize_offset(offset: int) -> int:
    if offset < 0:
        return 0
    return offset
