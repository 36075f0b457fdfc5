"""
Message catalogue (French).

Keys are stable; deployments can override any text with a YAML mapping
(config.MESSAGES_FILE) without touching code.
"""

from __future__ import annotations

from typing import Any, Mapping

import yaml

MESSAGES = {
    # Push to patient
    "push.single.title": "💊 Temps de prendre {medication}",
    "push.single.body": "Dosage: {dosage}",
    "push.multi.title": "💊 {count} Médicaments à prendre",
    "push.multi.body": "{items}",
    "push.item": "{medication} ({dosage})",
    "push.item_sep": ", ",
    # SMS to patient
    "sms.single": "MediCare: Bonjour {first_name}, il est temps de prendre {medication} ({dosage}).{instructions}",
    "sms.single.instructions": " {instructions}.",
    "sms.multi": "MediCare: Bonjour {first_name}, il est temps de prendre vos medicaments: {items}.",
    "sms.item": "{medication} ({dosage})",
    "sms.item_sep": ", ",
    # Caregiver escalation
    "alert.push.title": "⚠️ Médicament non pris",
    "alert.push.body": "{first_name} {last_name} n'a pas confirmé la prise de {medication}",
    "alert.title": "Médicament non pris",
    "alert.message": "{first_name} {last_name} n'a pas confirmé la prise de médicament",
    # Verification
    "sms.verification": "MediCare: votre code de vérification est {code}. Il expire dans {minutes} minutes.",
    # Fallbacks
    "dosage.unknown": "Dosage non spécifié",
    "medication.unknown": "Médicament",
    "patient.unknown": "Patient",
}


class MissingVarError(KeyError): ...


def fmt(key: str, **kwargs: Any) -> str:
    try:
        return MESSAGES[key].format(**kwargs)
    except KeyError as e:
        raise MissingVarError(f"Template '{key}' missing var: {e}") from e


def load_overrides(path: str) -> int:
    """Merge a YAML mapping of key -> text into MESSAGES. Returns the number of keys applied."""
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, Mapping):
        raise ValueError(f"{path}: expected a mapping of message keys to text")
    unknown = sorted(k for k in data if k not in MESSAGES)
    if unknown:
        raise ValueError(f"{path}: unknown message keys {unknown}")
    MESSAGES.update({k: str(v) for k, v in data.items()})
    return len(data)
