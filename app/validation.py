"""
Pure validation and sanitization of quotation requests.

``validate`` never mutates its input and performs no I/O. ``isValid`` depends
only on hard errors; warnings are informational. Messages are user-facing
(Indonesian) and service messages carry the 1-based position of the line.
"""

from __future__ import annotations

import math
import re
from datetime import date
from typing import Any, List, Optional

from app.state import QuotationRequest, ServiceItem, ValidationResult

MAX_REASONABLE_CONNECTIONS = 1000
DISCOUNT_TOLERANCE_POINTS = 1.0

# YYYY-MM-DD, optionally followed by an ISO time part
_ISO_DATE = re.compile(r"(\d{4}-\d{2}-\d{2})(?:T\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?")


def _text(val: Any) -> str:
    return "" if val is None else str(val).strip()


def _is_number(val: Any) -> bool:
    return isinstance(val, (int, float)) and not isinstance(val, bool) and not (
        isinstance(val, float) and math.isnan(val)
    )


def _is_positive_int(val: Any) -> bool:
    if not _is_number(val):
        return False
    if isinstance(val, float) and not val.is_integer():
        return False
    return val > 0


def _parse_date(raw: Any) -> Optional[date]:
    if not isinstance(raw, str):
        return None
    match = _ISO_DATE.fullmatch(raw.strip())
    if match is None:
        return None
    try:
        return date.fromisoformat(match.group(1))
    except ValueError:
        return None


def _validate_fee(value: Any, label: str, prefix: str, errors: List[str]) -> bool:
    """Hard errors for a missing or negative fee; True when the fee is usable."""
    if value is None:
        errors.append(f"{prefix}: {label} harus diisi")
        return False
    if not _is_number(value):
        errors.append(f"{prefix}: {label} harus berupa angka")
        return False
    if value < 0:
        errors.append(f"{prefix}: {label} tidak boleh negatif")
        return False
    return True


def _validate_service(service: ServiceItem, number: int, result: ValidationResult) -> None:
    prefix = f"Layanan {number}"
    errors, warnings = result.errors, result.warnings

    if not _text(service.service_name):
        errors.append(f"{prefix}: Nama layanan harus diisi")

    if not _is_positive_int(service.connection_count):
        errors.append(f"{prefix}: Jumlah sambungan harus lebih dari 0")
    elif service.connection_count > MAX_REASONABLE_CONNECTIONS:
        warnings.append(f"{prefix}: Jumlah sambungan sangat besar ({service.connection_count})")

    if _validate_fee(service.installation_fee, "Biaya PSB", prefix, errors):
        if service.installation_fee == 0:
            warnings.append(f"{prefix}: Biaya PSB adalah 0")

    normal_ok = _validate_fee(service.normal_monthly_fee, "Biaya bulanan normal", prefix, errors)
    discount_ok = _validate_fee(service.discounted_monthly_fee, "Biaya bulanan diskon", prefix, errors)
    if not (normal_ok and discount_ok):
        return

    normal = service.normal_monthly_fee
    discounted = service.discounted_monthly_fee
    if discounted > normal:
        warnings.append(f"{prefix}: Biaya diskon lebih besar dari biaya normal")

    # only when discounted < normal; equal fees are not cross-checked
    if normal > 0 and discounted < normal and _is_number(service.discount_percentage):
        calculated = (normal - discounted) / normal * 100
        if abs(service.discount_percentage - calculated) > DISCOUNT_TOLERANCE_POINTS:
            warnings.append(
                f"{prefix}: Persentase diskon tidak sesuai dengan perhitungan ({calculated:.1f}%)"
            )


def validate(request: QuotationRequest, today: Optional[date] = None) -> ValidationResult:
    today = today or date.today()
    result = ValidationResult()

    if not _text(request.customer_name):
        result.errors.append("Nama pelanggan harus diisi")

    if not request.request_date:
        result.errors.append("Tanggal SPH harus diisi")
    else:
        parsed = _parse_date(request.request_date)
        if parsed is None:
            result.errors.append("Format tanggal SPH tidak valid")
        elif parsed < today:
            result.warnings.append("Tanggal SPH sudah lewat dari hari ini")

    if not request.services:
        result.errors.append("Minimal harus ada satu layanan")
    else:
        for index, service in enumerate(request.services, start=1):
            _validate_service(service, index, result)

    for index, attachment in enumerate(request.attachments or [], start=1):
        if not isinstance(attachment, str) or not attachment.strip():
            result.errors.append(f"Lampiran {index} tidak valid")

    return result


def _clamp_floor(val: Any) -> int:
    if not _is_number(val) or math.isinf(val):
        return 0
    return max(0, int(math.floor(val)))


def _sanitize_service(service: ServiceItem) -> ServiceItem:
    pct = service.discount_percentage
    if not _is_number(pct) or math.isinf(pct) or pct <= 0:
        pct = None
    return ServiceItem(
        service_name=_text(service.service_name),
        connection_count=_clamp_floor(service.connection_count),
        installation_fee=_clamp_floor(service.installation_fee),
        normal_monthly_fee=_clamp_floor(service.normal_monthly_fee),
        discounted_monthly_fee=_clamp_floor(service.discounted_monthly_fee),
        discount_percentage=pct,
    )


def sanitize(request: QuotationRequest, today: Optional[date] = None) -> QuotationRequest:
    """Return a cleaned copy; ``sanitize(sanitize(x)) == sanitize(x)``."""
    today = today or date.today()
    return QuotationRequest(
        customer_name=_text(request.customer_name),
        request_date=_text(request.request_date) or today.isoformat(),
        services=[_sanitize_service(s) for s in request.services or []],
        notes=_text(request.notes),
        attachments=[a for a in request.attachments or [] if isinstance(a, str) and a.strip()],
        is_complete=request.is_complete,
    )


def missing_fields(request: QuotationRequest) -> List[str]:
    """Human-readable names of the fields still needed to build an SPH."""
    missing: List[str] = []
    if not request.customer_name:
        missing.append("Nama Pelanggan")
    service = request.services[0] if request.services else None
    if service is None:
        missing.append("Detail Layanan")
        return missing
    if service.connection_count is None:
        missing.append("Jumlah Sambungan")
    if service.installation_fee is None:
        missing.append("Biaya Pemasangan (PSB)")
    if service.normal_monthly_fee is None:
        missing.append("Biaya Bulanan Normal")
    if service.discounted_monthly_fee is None:
        missing.append("Biaya Bulanan Diskon")
    return missing
