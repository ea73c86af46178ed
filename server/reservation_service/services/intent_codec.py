"""Bounded-size encoding of pending reservations into gateway metadata.

The gateway caps every metadata value (500 characters for Stripe), so a
pending reservation is written as compact JSON with short keys. When the
single-slot form does not fit, the fields are split into a ``core`` slot
(who, what, how much) and a ``svc`` slot (when and where). Either form
decodes to the same PendingIntent.
"""

import json
import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..core.exceptions import CategoryValidationError, IntentTooLarge, MalformedIntent
from ..schemas.reservation import PendingIntent

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1

SINGLE_SLOT = "intent"
CORE_SLOT = "intent_core"
SERVICE_SLOT = "intent_svc"

# short key -> PendingIntent attribute
CORE_KEYS = {
    "c": "category",
    "s": "service_id",
    "o": "option_id",
    "p": "party_size",
    "u": "account_id",
    "gn": "guest_name",
    "ge": "guest_email",
    "a": "total_amount",
    "cur": "currency",
    "b": "cart_id",
    "ci": "cart_item_id",
    "i": "item_index",
}

SERVICE_KEYS = {
    "d": "date",
    "t": "time",
    "ts": "time_slot",
    "sd": "start_date",
    "ed": "end_date",
    "r": "room_id",
    "pu": "pickup_location",
    "do": "dropoff_location",
    "tn": "treatment_name",
    "pt": "participants",
}

REQUIRED_CORE = ("s", "p", "a", "cur")

REQUIRED_BY_CATEGORY = {
    "excursion": ("d", "t"),
    "lodging": ("sd", "ed"),
    "dining": ("d", "t"),
    "transport": ("d", "t", "pu", "do"),
    "spa": ("d", "t", "tn"),
}

_DETAIL_FIELDS = ("date", "time", "time_slot", "start_date", "end_date", "room_id",
                  "pickup_location", "dropoff_location", "treatment_name")


def _dump(fields: dict[str, Any]) -> str:
    return json.dumps(fields, separators=(",", ":"), ensure_ascii=False, sort_keys=True)


def _size(value: str) -> int:
    return len(value.encode("utf-8"))


def _long_name(key: str) -> str:
    return CORE_KEYS.get(key) or SERVICE_KEYS.get(key) or key


class IntentCodec:
    """Encodes PendingIntents into metadata slots and back."""

    def __init__(self, field_limit: int = 500):
        self.field_limit = field_limit

    def _core_fields(self, intent: PendingIntent) -> dict[str, Any]:
        fields = {
            "v": FORMAT_VERSION,
            "c": intent.details.category,
            "s": intent.service_id,
            "o": intent.option_id,
            "p": intent.party_size,
            "u": intent.holder.account_id,
            "gn": intent.holder.guest_name,
            "ge": intent.holder.guest_email,
            "a": intent.total_amount,
            "cur": intent.currency,
            "b": intent.cart_id,
            "ci": intent.cart_item_id,
            "i": intent.item_index,
        }
        return {key: value for key, value in fields.items() if value is not None}

    def _service_fields(self, intent: PendingIntent) -> dict[str, Any]:
        details = intent.details.model_dump(mode="json", exclude={"category"}, exclude_none=True)
        short = {attr: key for key, attr in SERVICE_KEYS.items()}
        fields = {short[name]: value for name, value in details.items()}
        if intent.participants:
            fields["pt"] = list(intent.participants)
        return fields

    def encode(self, intent: PendingIntent, prefix: str = "") -> dict[str, str]:
        """
        Encode an intent into gateway metadata.

        Args:
            intent: Pending reservation to carry
            prefix: Key prefix, used to place several intents in one metadata map

        Returns:
            Mapping of metadata key to encoded value; one slot when it fits,
            otherwise a core slot and a service slot

        Raises:
            IntentTooLarge: If even the split form exceeds the field limit
        """
        core = self._core_fields(intent)
        service = self._service_fields(intent)

        single = _dump({**core, **service})
        if _size(single) <= self.field_limit:
            return {f"{prefix}{SINGLE_SLOT}": single}

        slots = {
            f"{prefix}{CORE_SLOT}": _dump(core),
            f"{prefix}{SERVICE_SLOT}": _dump(service),
        }
        for slot, value in slots.items():
            if _size(value) > self.field_limit:
                raise IntentTooLarge(slot=slot, size=_size(value), limit=self.field_limit)

        logger.info(
            "Intent split across metadata slots",
            extra={
                "prefix": prefix,
                "single_size": _size(single),
                "field_limit": self.field_limit,
            }
        )
        return slots

    def encode_bytes(self, intent: PendingIntent) -> bytes:
        """Single-slot compact payload, regardless of the field limit."""
        return _dump({**self._core_fields(intent), **self._service_fields(intent)}).encode("utf-8")

    def _parse(self, raw: str | bytes, slot: str) -> dict[str, Any]:
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            value = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise MalformedIntent(f"Intent slot '{slot}' is not valid JSON") from exc
        if not isinstance(value, dict):
            raise MalformedIntent(f"Intent slot '{slot}' does not hold an object")
        return value

    def _collect(self, source: bytes | str | Mapping[str, str] | None, prefix: str) -> dict[str, Any]:
        if source is None or (not isinstance(source, Mapping) and not source):
            raise MalformedIntent("Intent metadata is absent")

        if not isinstance(source, Mapping):
            return self._parse(source, SINGLE_SLOT)

        single_key = f"{prefix}{SINGLE_SLOT}"
        core_key = f"{prefix}{CORE_SLOT}"
        service_key = f"{prefix}{SERVICE_SLOT}"

        if source.get(single_key):
            return self._parse(source[single_key], single_key)

        core_raw = source.get(core_key)
        service_raw = source.get(service_key)
        if not core_raw and not service_raw:
            raise MalformedIntent(f"No intent found under metadata prefix '{prefix}'")
        if not core_raw or not service_raw:
            missing = core_key if not core_raw else service_key
            raise MalformedIntent(f"Split intent is missing slot '{missing}'", missing_fields=[missing])

        merged = self._parse(core_raw, core_key)
        merged.update(self._parse(service_raw, service_key))
        return merged

    def decode(self, source: bytes | str | Mapping[str, str] | None, prefix: str = "") -> PendingIntent:
        """
        Decode an intent from a raw payload or from metadata slots.

        Raises:
            MalformedIntent: If the payload is absent, undecodable, or lacks
                fields the category tag requires
            CategoryValidationError: If the fields are present but invalid
                for the category
        """
        fields = self._collect(source, prefix)

        if fields.get("v") != FORMAT_VERSION:
            raise MalformedIntent(f"Unsupported intent format version {fields.get('v')!r}")

        category = fields.get("c")
        if category not in REQUIRED_BY_CATEGORY:
            raise MalformedIntent(f"Unknown or missing category tag {category!r}", missing_fields=["category"])

        missing = [key for key in REQUIRED_CORE + REQUIRED_BY_CATEGORY[category] if fields.get(key) in (None, "")]
        if not fields.get("u") and not fields.get("ge"):
            missing.append("holder")
        if missing:
            names = [_long_name(key) for key in missing]
            raise MalformedIntent(
                f"Intent for category '{category}' is missing {', '.join(names)}",
                missing_fields=names,
            )

        details = {"category": category}
        for key, attr in SERVICE_KEYS.items():
            if attr in _DETAIL_FIELDS and key in fields:
                details[attr] = fields[key]

        try:
            return PendingIntent.model_validate({
                "details": details,
                "service_id": fields["s"],
                "option_id": fields.get("o"),
                "party_size": fields["p"],
                "participants": fields.get("pt", []),
                "holder": {
                    "account_id": fields.get("u"),
                    "guest_name": fields.get("gn"),
                    "guest_email": fields.get("ge"),
                },
                "total_amount": fields["a"],
                "currency": fields["cur"],
                "cart_id": fields.get("b"),
                "cart_item_id": fields.get("ci"),
                "item_index": fields.get("i"),
            })
        except PydanticValidationError as exc:
            errors = [
                {"path": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
                for error in exc.errors()
            ]
            raise CategoryValidationError(
                category,
                f"Intent fields are not valid for category '{category}'",
                errors=errors,
            ) from exc
