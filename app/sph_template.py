"""Jinja2 template for the SPH (Surat Penawaran Harga) letter."""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

from jinja2 import BaseLoader, Environment

import app.config as cfg
from app.state import QuotationRequest

_MONTHS_ID = [
    "Januari", "Februari", "Maret", "April", "Mei", "Juni",
    "Juli", "Agustus", "September", "Oktober", "November", "Desember",
]


def format_idr(amount: Any) -> str:
    """1000000 -> 'Rp 1.000.000' (no decimals, dot thousands separator)."""
    try:
        value = int(amount)
    except (TypeError, ValueError):
        return "-"
    return "Rp " + f"{value:,}".replace(",", ".")


def format_date_id(raw: Any) -> str:
    """'2025-01-15' -> '15 Januari 2025'; unparseable input is returned unchanged."""
    if not isinstance(raw, str):
        return "" if raw is None else str(raw)
    try:
        d = date.fromisoformat(raw.strip()[:10])
    except ValueError:
        return raw
    return f"{d.day} {_MONTHS_ID[d.month - 1]} {d.year}"


SPH_TEMPLATE = """<!DOCTYPE html>
<html lang="id">
<head>
  <meta charset="UTF-8">
  <title>Surat Penawaran Harga - {{ customer_name }}</title>
  <style>
    body { font-family: Arial, sans-serif; color: #333; font-size: 11px; line-height: 1.3; }
    .container { max-width: 800px; margin: 0 auto; padding: 20px; }
    .header { border-bottom: 1px solid #ccc; padding-bottom: 15px; margin-bottom: 20px; }
    .header h1 { font-size: 18px; margin: 0; }
    .services-table { width: 100%; border-collapse: collapse; margin: 20px 0; font-size: 10px; }
    .services-table th, .services-table td { border: 1px solid #000; padding: 6px 4px; text-align: center; }
    .services-table th { background-color: #c41e3a; color: #fff; }
    .notes { margin: 15px 0; padding: 10px; background-color: #f9f9f9; border-left: 3px solid #c41e3a; }
    .signature { margin-top: 40px; width: 180px; text-align: center; }
  </style>
</head>
<body>
  <div class="container">
    <div class="header">
      <h1>{{ company_name }}</h1>
      <p>{{ company_address }}</p>
    </div>

    <p style="text-align: right;"><strong>{{ request_date | date_id }}</strong></p>

    <div class="customer-info">
      <p><strong>Kepada Yth.</strong></p>
      <p><strong>{{ customer_name }}</strong></p>
      <p><strong>Di tempat</strong></p>
      <p><strong>Perihal : Surat Penawaran Harga Layanan Internet</strong></p>
      <p><strong>Lampiran : {{ attachments | join(", ") if attachments else "-" }}</strong></p>
    </div>

    <p>Dengan hormat,</p>
    <p>Kami mengucapkan terima kasih atas kepercayaan yang diberikan kepada <strong>{{ company_name }}</strong>
    untuk dapat bekerjasama dengan <strong>{{ customer_name }}</strong>. Dengan ini kami menyampaikan
    penawaran harga sebagai berikut :</p>

    <table class="services-table">
      <thead>
        <tr>
          <th>NO</th>
          <th>Layanan</th>
          <th>Jumlah (sambungan)</th>
          <th>Biaya PSB (Rp)</th>
          <th>Biaya Abonemen Normal / Bulanan</th>
          <th>Biaya Abonemen Diskon / Bulanan</th>
        </tr>
      </thead>
      <tbody>
        {% for s in services %}
        <tr>
          <td>{{ loop.index }}</td>
          <td>{{ s.service_name }}</td>
          <td>{{ s.connection_count }}</td>
          <td>{{ s.installation_fee | idr }}</td>
          <td>{{ s.normal_monthly_fee | idr }}</td>
          <td>{{ s.discounted_monthly_fee | idr }}</td>
        </tr>
        {% endfor %}
      </tbody>
    </table>

    <p><strong>Syarat dan Ketentuan:</strong></p>
    <ol>
      <li>Belum termasuk PPN.</li>
      <li>Estimasi waktu penyediaan layanan 30 hari kalender sejak penandatanganan Kontrak Berlangganan jika jaringan Fiber Optik sudah tersedia.</li>
      <li>Penawaran berlaku selama {{ validity_days }} hari kalender sejak penawaran dikeluarkan.</li>
      <li>Penawaran bersifat terbatas/rahasia dan tidak diperkenankan disebarluaskan.</li>
    </ol>

    <p>Demikian surat penawaran harga ini kami sampaikan, agar dapat menjadi bahan pertimbangan
    pihak manajemen <strong>{{ customer_name }}</strong>.</p>

    {% if notes %}
    <div class="notes">
      <h4>Catatan:</h4>
      <p>{{ notes }}</p>
    </div>
    {% endif %}

    <p>Hormat kami,</p>
    <div class="signature">
      <p><strong>Nama AM</strong></p>
      <p><strong>{{ company_name }}</strong></p>
    </div>
  </div>
</body>
</html>
"""

_env = Environment(loader=BaseLoader(), autoescape=True)
_env.filters["idr"] = format_idr
_env.filters["date_id"] = format_date_id
_template = _env.from_string(SPH_TEMPLATE)


def render_sph_html(request: QuotationRequest, settings: Optional[cfg.Settings] = None) -> str:
    settings = settings or cfg.settings
    return _template.render(
        customer_name=request.customer_name or "",
        request_date=request.request_date or "",
        services=request.services,
        notes=request.notes,
        attachments=request.attachments,
        company_name=settings.COMPANY_NAME,
        company_address=settings.COMPANY_ADDRESS,
        validity_days=cfg.QUOTE_VALIDITY_DAYS,
    )
