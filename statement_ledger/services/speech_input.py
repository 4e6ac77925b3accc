"""Voice entry for a single ledger cell: spoken Vietnamese amounts or raw transcripts."""
import re
import unicodedata
from typing import Optional, Protocol

from statement_ledger.models.schemas import NUMERIC_FIELDS, FieldUpdate, NumericFieldUpdate, TextFieldUpdate

_LEADING_NUMBER = re.compile(r"^\d+")


class SpeechInputPort(Protocol):
    def listen(self) -> Optional[str]:
        """Capture one utterance and return its transcript, or None if nothing was heard."""
        ...


def parse_spoken_amount(transcript: str) -> Optional[float]:
    """
    "5 triệu" -> 5000000, "200 nghìn" -> 200000, "1.500.000" -> 1500000.
    Separators and spaces are dropped before reading the leading number.
    """
    text = unicodedata.normalize("NFC", transcript).lower()
    match = _LEADING_NUMBER.match(re.sub(r"[,.\s]", "", text))
    if not match:
        return None
    value = float(match.group())
    if "triệu" in text:
        value *= 1_000_000
    elif "nghìn" in text or "ngàn" in text:
        value *= 1_000
    return value


def voice_update(index: int, field: str, transcript: str) -> Optional[FieldUpdate]:
    """Update for one (row, field) target; None when a numeric field hears no number."""
    if field in NUMERIC_FIELDS:
        amount = parse_spoken_amount(transcript)
        if amount is None:
            return None
        return NumericFieldUpdate(index=index, field=field, value=amount)
    return TextFieldUpdate(index=index, field=field, value=transcript.strip())


def capture_voice_update(port: SpeechInputPort, index: int, field: str) -> Optional[FieldUpdate]:
    transcript = port.listen()
    if not transcript or not transcript.strip():
        return None
    return voice_update(index, field, transcript)
