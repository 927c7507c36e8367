"""Patient identifier helpers that keep internal database ids off cashier screens."""
from __future__ import annotations

import re
from typing import Any, Iterable, List, Mapping, Optional, Sequence

FRIENDLY_PATIENT_ID = re.compile(r"^P\d{3,}$", re.IGNORECASE)
NOT_AVAILABLE = "N/A"


def is_friendly_patient_id(value: Any) -> bool:
    return value is not None and bool(FRIENDLY_PATIENT_ID.match(str(value).strip()))


def internal_patient_key(patient: Mapping[str, Any] | None) -> str:
    if not patient:
        return ""
    return str(patient.get("id") or patient.get("_id") or patient.get("patientId") or "")


def patient_full_name(patient: Mapping[str, Any]) -> str:
    name = patient.get("name")
    if name:
        return str(name)
    first = patient.get("firstName") or ""
    last = patient.get("lastName") or ""
    return f"{first} {last}".strip()


def normalize_patients(patients: Iterable[Mapping[str, Any]] | None) -> List[dict]:
    """Copy the patient list, filling missing friendly ids as ``P001``, ``P002``... by position.

    Existing ``patientId`` values from the backend are never overwritten.
    """
    normalized: List[dict] = []
    for index, patient in enumerate(patients or []):
        base = dict(patient or {})
        friendly = str(base.get("patientId") or "").strip()
        if not friendly:
            friendly = f"P{index + 1:03d}"
        base["id"] = base.get("id") or base.get("_id") or friendly
        base["patientId"] = friendly
        normalized.append(base)
    return normalized


def lookup_display_id(patients: Sequence[Mapping[str, Any]], internal_id: Any) -> Optional[str]:
    """Resolve an internal id against the patient list.

    Returns the patient's own friendly id when it has one, otherwise ``P<position+1>``
    padded to three digits. The fallback is ``P001`` and never the bare ``P1``, so every
    id handed out here still matches :data:`FRIENDLY_PATIENT_ID`.
    """
    if internal_id in (None, "") or not patients:
        return None
    key = str(internal_id)
    for index, patient in enumerate(patients):
        if not isinstance(patient, Mapping):
            continue
        candidate = patient.get("id") or patient.get("_id")
        if candidate is not None and str(candidate) == key:
            return str(patient.get("patientId") or f"P{index + 1:03d}")
    return None


def resolve_patient_display(patients: Sequence[Mapping[str, Any]] | None, raw: Any) -> str:
    """Return ``"Name (P001)"`` for a known patient, the raw value if it is already friendly, else ``N/A``."""
    if raw is None or raw == "":
        return NOT_AVAILABLE
    key = str(raw)
    if patients:
        for patient in patients:
            if not isinstance(patient, Mapping):
                continue
            friendly = str(patient.get("patientId") or "")
            if internal_patient_key(patient) == key or friendly == key or str(patient.get("_id") or "") == key:
                pid = friendly if is_friendly_patient_id(friendly) else ""
                name = patient_full_name(patient)
                if name and pid:
                    return f"{name} ({pid})"
                return name or pid or NOT_AVAILABLE
    return key if is_friendly_patient_id(key) else NOT_AVAILABLE


__all__ = [
    "FRIENDLY_PATIENT_ID",
    "is_friendly_patient_id",
    "internal_patient_key",
    "patient_full_name",
    "normalize_patients",
    "lookup_display_id",
    "resolve_patient_display",
]
