"""Prompt text for the completion collaborator (system, router and extractor)."""

import json
from typing import Dict, List

SYSTEM_INSTRUCTION = (
    "Anda adalah asisten AI yang membantu membuat dokumen SPH (Surat Penawaran Harga) "
    "dan memberikan informasi terkait layanan internet. Berikan respons yang profesional "
    "dan informatif dalam bahasa Indonesia."
)

INTENT_CREATE_QUOTATION = "create_quotation"
INTENT_GENERAL = "general_conversation"

# Add new intents here; the router only accepts names listed in this table.
DEFINED_INTENTS: List[Dict[str, object]] = [
    {
        "intent": INTENT_CREATE_QUOTATION,
        "description": (
            "Niat untuk membuat atau menanyakan tentang Surat Penawaran Harga (SPH), "
            "quotation, atau penawaran harga."
        ),
        "keywords": ["buatkan SPH", "penawaran harga", "quotation", "surat penawaran"],
    },
    {
        "intent": INTENT_GENERAL,
        "description": (
            "Percakapan umum, sapaan, atau pertanyaan yang tidak terkait dengan pembuatan dokumen."
        ),
        "keywords": ["halo", "siapa kamu", "terima kasih", "apa kabar"],
    },
]


def intent_names() -> List[str]:
    return [str(i["intent"]) for i in DEFINED_INTENTS]


def build_intent_prompt(message: str) -> str:
    return f"""
Anda adalah sebuah AI router yang bertugas untuk mengklasifikasikan niat pengguna.
Berdasarkan pesan pengguna, tentukan niatnya dari daftar berikut.
Hanya berikan jawaban dalam format JSON.

Daftar Niat:
{json.dumps(DEFINED_INTENTS, indent=2, ensure_ascii=False)}

Pesan Pengguna: "{message}"

Respon JSON:
{{
  "intent": "nama_intent_yang_paling_sesuai"
}}
""".strip()


def build_extraction_prompt(message: str, today: str) -> str:
    """Extraction prompt; ``today`` (YYYY-MM-DD) is the default date."""
    return f"""
PERAN ANDA:
Anda adalah AI ahli ekstraksi data yang sangat teliti. Tugas Anda adalah menganalisis teks dari pengguna dan mengubahnya menjadi format JSON yang terstruktur secara akurat. Jangan pernah membuat data yang tidak ada di dalam teks.

TUGAS ANDA:
Ekstrak informasi untuk pembuatan Surat Penawaran Harga (SPH) dari pesan pengguna di bawah. Hasilkan HANYA sebuah objek JSON yang valid tanpa teks pembuka atau penutup.

FORMAT JSON YANG WAJIB DIIKUTI:
{{
  "customerName": "string | null",
  "requestDate": "string (YYYY-MM-DD) | null",
  "services": [
    {{
      "serviceName": "string",
      "connectionCount": "integer | null",
      "installationFee": "integer | null",
      "normalMonthlyFee": "integer | null",
      "discountedMonthlyFee": "integer | null"
    }}
  ],
  "notes": "string | null",
  "isComplete": "boolean"
}}

ATURAN:
1. isComplete: setel ke true HANYA jika customerName, requestDate, dan setidaknya satu item di services dengan semua field-nya terisi (tidak null). Jika tidak, setel ke false.
2. Tanggal: jika pengguna tidak menyebutkan tanggal, gunakan tanggal hari ini {today} dalam format YYYY-MM-DD.
3. Angka: semua nilai biaya (installationFee, normalMonthlyFee, discountedMonthlyFee) harus berupa integer tanpa format mata uang (misalnya 500000, bukan "Rp 500.000"). "PSB" adalah biaya pemasangan (installationFee); "gratis" berarti 0.
4. Data tidak lengkap: jika ada informasi yang tidak dapat ditentukan, isi field tersebut dengan null, jangan menebak, dan setel isComplete ke false.
5. Beberapa layanan: pengguna mungkin menyebutkan beberapa layanan dalam satu pesan. Masukkan semuanya ke dalam array services.

CONTOH INPUT 1 (lengkap):
"Tolong buatkan SPH untuk PT Maju Jaya per hari ini. Layanannya internet 100 Mbps 2 koneksi, PSB gratis, bulanan 800rb dari harga normal 1jt. Catatan: penawaran berlaku 14 hari."

CONTOH OUTPUT 1:
{{
  "customerName": "PT Maju Jaya",
  "requestDate": "{today}",
  "services": [
    {{
      "serviceName": "Internet 100 Mbps",
      "connectionCount": 2,
      "installationFee": 0,
      "normalMonthlyFee": 1000000,
      "discountedMonthlyFee": 800000
    }}
  ],
  "notes": "Penawaran berlaku 14 hari.",
  "isComplete": true
}}

CONTOH INPUT 2 (tidak lengkap):
"Buatkan quotation untuk PT Sinar Abadi dong, layanannya internet 20 Mbps."

CONTOH OUTPUT 2:
{{
  "customerName": "PT Sinar Abadi",
  "requestDate": "{today}",
  "services": [
    {{
      "serviceName": "Internet 20 Mbps",
      "connectionCount": null,
      "installationFee": null,
      "normalMonthlyFee": null,
      "discountedMonthlyFee": null
    }}
  ],
  "notes": null,
  "isComplete": false
}}

PESAN PENGGUNA UNTUK DIANALISIS: "{message}"
""".strip()
