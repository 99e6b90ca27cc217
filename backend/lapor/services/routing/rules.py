"""
Routing Rule Tables

Static, ordered data for the routing engine. Order is significant:
- DEPARTMENT_RULES: earlier departments win score ties.
- PRIORITY_RULES: scanned from most to least urgent, first hit wins.

Keywords are lowercase and matched as substrings of the lowercased text.
"""
from typing import Dict, List, Tuple

from ...models.db_models import ReportCategory


# =============================================================================
# DEPARTMENTS
# =============================================================================

# (code, display name, keywords)
DEPARTMENT_RULES: List[Tuple[str, str, Tuple[str, ...]]] = [
    ("INFRASTRUKTUR", "Dinas Infrastruktur", (
        "jalan", "lubang", "aspal", "trotoar", "jembatan", "gorong-gorong",
        "drainase", "saluran", "banjir", "genangan", "rusak", "berlubang",
        "retak", "amblas", "longsor", "infrastruktur", "perbaikan jalan",
        "pedestrian", "zebra cross", "rambu", "marka",
    )),
    ("KEBERSIHAN", "Dinas Kebersihan & Lingkungan", (
        "sampah", "limbah", "kotor", "bau", "tumpukan", "pembuangan",
        "tpa", "tempat sampah", "kebersihan", "jorok", "kumuh",
        "pencemaran", "polusi", "sanitasi", "wc umum", "toilet",
    )),
    ("KEAMANAN", "Dinas Keamanan & Ketertiban", (
        "kriminal", "pencurian", "perampokan", "kekerasan", "tawuran",
        "premanisme", "vandalisme", "keamanan", "bahaya", "ancaman",
        "pencopetan", "pemerasan", "intimidasi", "geng", "motor",
    )),
    ("SOSIAL", "Dinas Sosial", (
        "kemiskinan", "gelandangan", "pengemis", "anak jalanan", "lansia",
        "disabilitas", "bantuan", "sosial", "kesejahteraan", "panti",
        "tunawisma", "pengangguran", "ekonomi", "keluarga",
    )),
    ("KESEHATAN", "Dinas Kesehatan", (
        "penyakit", "wabah", "epidemi", "rumah sakit", "puskesmas",
        "kesehatan", "obat", "medis", "dokter", "ambulans", "gizi",
        "stunting", "imunisasi", "demam berdarah", "nyamuk", "fogging",
    )),
    ("PENDIDIKAN", "Dinas Pendidikan", (
        "sekolah", "pendidikan", "guru", "murid", "siswa", "belajar",
        "gedung sekolah", "fasilitas sekolah", "beasiswa", "putus sekolah",
    )),
    ("PERHUBUNGAN", "Dinas Perhubungan", (
        "lalu lintas", "macet", "kemacetan", "parkir", "angkutan",
        "transportasi", "bus", "terminal", "halte", "traffic light",
        "lampu merah", "simpang", "persimpangan", "kecelakaan",
    )),
    ("PERIZINAN", "Dinas Perizinan & Administrasi", (
        "izin", "perizinan", "imb", "siup", "sertifikat", "dokumen",
        "administrasi", "birokrasi", "pelayanan publik",
    )),
    ("LINGKUNGAN", "Dinas Lingkungan Hidup", (
        "pohon", "taman", "ruang hijau", "penghijauan", "udara",
        "polusi udara", "asap", "kebakaran hutan", "illegal logging",
        "satwa", "konservasi", "alam", "lingkungan hidup",
    )),
]


# =============================================================================
# PRIORITY
# =============================================================================

# (priority, keywords) - 1 is most urgent
PRIORITY_RULES: List[Tuple[int, Tuple[str, ...]]] = [
    (1, ("darurat", "emergency", "kritis", "bahaya", "segera", "nyawa",
         "kecelakaan fatal", "korban jiwa")),
    (2, ("urgent", "mendesak", "parah", "serius", "berbahaya", "kecelakaan", "ambruk")),
    (3, ("penting", "perlu ditangani", "perhatian")),
    (4, ("sedang", "biasa")),
    (5, ("ringan", "minor", "kecil")),
]


# =============================================================================
# CATEGORY FALLBACK
# =============================================================================

# OTHER has no entry and falls through to the default department
CATEGORY_DEPARTMENTS: Dict[ReportCategory, str] = {
    ReportCategory.INFRASTRUCTURE: "INFRASTRUKTUR",
    ReportCategory.CLEANLINESS: "KEBERSIHAN",
    ReportCategory.SECURITY: "KEAMANAN",
    ReportCategory.SOCIAL: "SOSIAL",
    ReportCategory.HEALTH: "KESEHATAN",
    ReportCategory.EDUCATION: "PENDIDIKAN",
    ReportCategory.TRANSPORTATION: "PERHUBUNGAN",
    ReportCategory.PERMITS: "PERIZINAN",
    ReportCategory.ENVIRONMENT: "LINGKUNGAN",
}


def department_names() -> Dict[str, str]:
    """code -> display name, in declaration order."""
    return {code: name for code, name, _ in DEPARTMENT_RULES}
