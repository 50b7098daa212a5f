from dataclasses import replace
from datetime import date

from app.state import QuotationRequest, ServiceItem
from app.validation import missing_fields, sanitize, validate

from conftest import maju_jaya

TODAY = date(2024, 1, 10)


def _request(**overrides):
    return QuotationRequest.from_dict(maju_jaya(**overrides))


def test_worked_example_is_valid():
    result = validate(_request(), today=TODAY)
    assert result.is_valid
    assert result.errors == []
    # PSB 0 is allowed but flagged
    assert "Layanan 1: Biaya PSB adalah 0" in result.warnings


def test_missing_customer_name_is_error():
    result = validate(_request(customerName="  "), today=TODAY)
    assert not result.is_valid
    assert "Nama pelanggan harus diisi" in result.errors


def test_zero_connections_is_error():
    result = validate(_request(service={"connectionCount": 0}), today=TODAY)
    assert "Layanan 1: Jumlah sambungan harus lebih dari 0" in result.errors


def test_fractional_connections_is_error():
    result = validate(_request(service={"connectionCount": 1.5}), today=TODAY)
    assert not result.is_valid


def test_huge_connection_count_is_only_a_warning():
    result = validate(_request(service={"connectionCount": 5000}), today=TODAY)
    assert result.is_valid
    assert any("sangat besar" in w for w in result.warnings)


def test_negative_fee_is_error():
    result = validate(_request(service={"normalMonthlyFee": -1}), today=TODAY)
    assert "Layanan 1: Biaya bulanan normal tidak boleh negatif" in result.errors


def test_missing_fee_is_error():
    result = validate(_request(service={"discountedMonthlyFee": None}), today=TODAY)
    assert "Layanan 1: Biaya bulanan diskon harus diisi" in result.errors


def test_discount_above_normal_is_warning():
    result = validate(
        _request(service={"normalMonthlyFee": 500000, "discountedMonthlyFee": 600000}), today=TODAY
    )
    assert result.is_valid
    assert "Layanan 1: Biaya diskon lebih besar dari biaya normal" in result.warnings


def test_discount_percentage_mismatch_is_warning():
    result = validate(_request(service={"discountPercentage": 10}), today=TODAY)
    assert result.is_valid
    assert any("20.0%" in w for w in result.warnings)


def test_discount_percentage_within_tolerance():
    result = validate(_request(service={"discountPercentage": 20.5}), today=TODAY)
    assert not any("Persentase" in w for w in result.warnings)


def test_equal_fees_skip_percentage_check():
    result = validate(
        _request(
            service={"normalMonthlyFee": 1000, "discountedMonthlyFee": 1000, "discountPercentage": 50}
        ),
        today=TODAY,
    )
    assert not any("Persentase" in w for w in result.warnings)


def test_past_date_is_warning_and_bad_date_is_error():
    past = validate(_request(), today=date(2024, 2, 1))
    assert past.is_valid
    assert "Tanggal SPH sudah lewat dari hari ini" in past.warnings

    bad = validate(_request(requestDate="15/01/2024"), today=TODAY)
    assert "Format tanggal SPH tidak valid" in bad.errors


def test_no_services_is_error():
    result = validate(_request(services=[]), today=TODAY)
    assert "Minimal harus ada satu layanan" in result.errors


def test_second_service_uses_its_position():
    data = maju_jaya()
    data["services"].append(dict(data["services"][0], connectionCount=0))
    result = validate(QuotationRequest.from_dict(data), today=TODAY)
    assert "Layanan 2: Jumlah sambungan harus lebih dari 0" in result.errors
    assert not any(e.startswith("Layanan 1") for e in result.errors)


def test_validate_does_not_mutate():
    req = _request(customerName="  PT Spasi  ", service={"installationFee": 10.7})
    before = req.to_dict()
    validate(req, today=TODAY)
    assert req.to_dict() == before


def test_sanitize_cleans_numbers_and_text():
    req = QuotationRequest(
        customer_name="  PT Bersih ",
        request_date=None,
        services=[
            ServiceItem(
                service_name=" Internet ",
                connection_count=2.9,
                installation_fee=-5,
                normal_monthly_fee=1000.4,
                discounted_monthly_fee=900,
                discount_percentage=0,
            )
        ],
        notes=None,
        attachments=["a.pdf", "", 3],
    )
    out = sanitize(req, today=TODAY)
    assert out.customer_name == "PT Bersih"
    assert out.request_date == "2024-01-10"
    s = out.services[0]
    assert (s.service_name, s.connection_count, s.installation_fee, s.normal_monthly_fee) == (
        "Internet",
        2,
        0,
        1000,
    )
    assert s.discount_percentage is None
    assert out.notes == ""
    assert out.attachments == ["a.pdf"]


def test_sanitize_is_idempotent():
    req = _request(customerName=" PT X ", service={"installationFee": 99.9, "discountPercentage": 20})
    once = sanitize(req, today=TODAY)
    assert sanitize(once, today=TODAY) == once


def test_missing_fields_for_partial_request():
    req = _request(isComplete=False, service={"connectionCount": None, "normalMonthlyFee": None})
    assert missing_fields(req) == ["Jumlah Sambungan", "Biaya Bulanan Normal"]

    assert missing_fields(QuotationRequest()) == ["Nama Pelanggan", "Detail Layanan"]


def test_date_must_parse_in_full():
    bad = validate(_request(requestDate="2099-01-15garbage"), today=TODAY)
    assert not bad.is_valid
    assert "Format tanggal SPH tidak valid" in bad.errors

    assert validate(_request(requestDate=" 2024-01-15 "), today=TODAY).is_valid
    assert validate(_request(requestDate="2024-01-15T09:30:00Z"), today=TODAY).is_valid
    assert not validate(_request(requestDate="2024-02-30"), today=TODAY).is_valid


def test_non_string_text_fields_are_coerced():
    req = replace(_request(), customer_name=123, notes=7)
    assert validate(req, today=TODAY).is_valid
    out = sanitize(req, today=TODAY)
    assert (out.customer_name, out.notes) == ("123", "7")
    assert sanitize(out, today=TODAY) == out
