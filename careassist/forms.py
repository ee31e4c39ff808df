"""Entry forms for new PD exchanges and HD sessions.

Form fields hold raw user input (usually strings). Nothing reaches the store
until :meth:`PDExchangeForm.to_payload` / :meth:`HDExchangeForm.to_payload`
have validated it.

Image attachments are uploaded before the record is inserted. If the upload
fails the whole submission is abandoned and nothing is written.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from careassist.civil import default_entry_timestamp, normalize_entry_timestamp
from careassist.context import PatientContext
from careassist.errors import BlobUploadError, InvalidInputError, SubmissionError
from careassist.records import BaxterStrength, HDExchange, PDExchange
from careassist.stores import BlobStore, RecordStore
from careassist.uf import fill_volume, format_uf, to_number, ultrafiltration

logger = logging.getLogger(__name__)

DEFAULT_BAG_VOLUME = 2000
DEFAULT_STRENGTH = BaxterStrength.LOW.value


def parse_number(value: Any, label: str) -> Optional[float]:
    """Blank gives ``None``; anything non-numeric is a validation error."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    number = to_number(value)
    if number is None:
        raise InvalidInputError(f"{label} must be a number")
    return number


def _require(value: Any, label: str) -> float:
    number = parse_number(value, label)
    if number is None:
        raise InvalidInputError(f"{label} is required")
    return number


@dataclass
class ImageAttachment:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass
class PDExchangeForm:
    timestamp: str = field(default_factory=default_entry_timestamp)
    baxter_strength: str = DEFAULT_STRENGTH
    bag_volume: Any = DEFAULT_BAG_VOLUME
    leftover_volume: Any = 0
    drain_volume: Any = ""
    weight: Any = ""
    notes: str = ""
    image: Optional[ImageAttachment] = None

    @property
    def fill_volume(self) -> float:
        return fill_volume(to_number(self.bag_volume) or 0, to_number(self.leftover_volume))

    @property
    def uf(self) -> Optional[float]:
        """Live UF preview; unknown until a drain volume is entered."""
        return ultrafiltration(self.drain_volume, self.fill_volume)

    @property
    def uf_display(self) -> str:
        return format_uf(self.uf)

    def to_payload(self) -> Dict[str, Any]:
        try:
            strength = BaxterStrength(self.baxter_strength).value
        except ValueError:
            raise InvalidInputError(f"Unknown Baxter strength: {self.baxter_strength}") from None

        bag = _require(self.bag_volume, "Bag volume")
        if bag <= 0:
            raise InvalidInputError("Bag volume must be positive")
        leftover = parse_number(self.leftover_volume, "Leftover volume") or 0
        if leftover < 0:
            raise InvalidInputError("Leftover volume cannot be negative")
        drain = _require(self.drain_volume, "Drain volume")
        if drain < 0:
            raise InvalidInputError("Drain volume cannot be negative")
        weight = parse_number(self.weight, "Weight")

        timestamp = normalize_entry_timestamp(self.timestamp or default_entry_timestamp())
        try:
            datetime.fromisoformat(timestamp)
        except ValueError:
            raise InvalidInputError(f"Invalid timestamp: {self.timestamp}") from None

        return {
            "timestamp": timestamp,
            "baxter_strength": strength,
            "fill_volume": fill_volume(bag, leftover),
            "drain_volume": drain,
            "weight": weight,
            "notes": self.notes or None,
        }

    def reset_after_submit(self) -> None:
        self.drain_volume = ""
        self.notes = ""
        self.image = None


@dataclass
class HDExchangeForm:
    pre_weight: Any = ""
    post_weight: Any = ""
    note: str = ""

    def to_payload(self) -> Dict[str, Any]:
        pre = _require(self.pre_weight, "Pre-dialysis weight")
        post = _require(self.post_weight, "Post-dialysis weight")
        if pre <= 0 or post <= 0:
            raise InvalidInputError("Weights must be positive")
        return {"pre_weight": pre, "post_weight": post, "note": self.note or None}

    def reset(self) -> None:
        self.pre_weight = ""
        self.post_weight = ""
        self.note = ""


async def submit_pd_exchange(
    ctx: PatientContext,
    form: PDExchangeForm,
    store: RecordStore,
    blobs: Optional[BlobStore] = None,
) -> PDExchange:
    """Validate, upload the optional image, then insert.

    Returns the stored record, whose ``uf`` is the store's value.
    """
    payload = form.to_payload()

    if form.image is not None:
        if blobs is None:
            raise SubmissionError("An image was attached but no blob store is configured")
        try:
            payload["image_url"] = await blobs.upload(
                form.image.filename, form.image.content, form.image.content_type
            )
        except BlobUploadError as e:
            logger.warning("Image upload failed, exchange not saved: %s", e)
            raise SubmissionError(f"Image upload failed: {e}") from e

    record = await store.insert_pd(ctx.patient_id, payload)
    logger.info("Saved PD exchange %s for patient %s", record.id, ctx.patient_id)
    form.reset_after_submit()
    return record


async def submit_hd_exchange(
    ctx: PatientContext, form: HDExchangeForm, store: RecordStore
) -> HDExchange:
    payload = form.to_payload()
    record = await store.insert_hd(ctx.patient_id, payload)
    form.reset()
    return record
