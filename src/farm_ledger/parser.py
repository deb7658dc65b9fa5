"""Message parser: raw chat-log records to typed activity candidates.

Embedded field lists posted by the game's logging bot are preferred. Plain
messages fall back to keyword scanning and looser quantity/amount patterns.
"""

from __future__ import annotations

import re
import unicodedata
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

import structlog

from farm_ledger.errors import ParseFailure
from farm_ledger.models import ActivityCategory, ActivityKind, EmbedField, RawLogRecord

logger = structlog.get_logger(__name__)

UNKNOWN_ACTOR = "unknown"

_KIND_PATTERNS: dict[ActivityKind, re.Pattern[str]] = {
    ActivityKind.ITEM_ADD: re.compile(
        r"\b(?:inserir|inseriu|inserido|adicionar|adicionou|adicionado|"
        r"add|added|insert|inserted)\b"
    ),
    ActivityKind.ITEM_REMOVE: re.compile(
        r"\b(?:remover|removeu|removido|retirar|retirou|retirado|remove|removed)\b"
    ),
    ActivityKind.DEPOSIT: re.compile(
        r"\b(?:deposito|depositar|depositou|depositado|deposit|deposited|vendeu|sold)\b"
    ),
    ActivityKind.WITHDRAWAL: re.compile(
        r"\b(?:saque|sacar|sacou|sacado|withdrawal|withdraw|withdrew|withdrawn)\b"
    ),
}

_ACTION_WORDS = frozenset(
    {
        "inserir", "inseriu", "inserido", "adicionar", "adicionou", "adicionado",
        "add", "added", "insert", "inserted", "remover", "removeu", "removido",
        "retirar", "retirou", "retirado", "remove", "removed", "item",
    }
)
_ITEM_STOP_WORDS = frozenset(
    {"no", "na", "nos", "nas", "ao", "para", "to", "into", "in", "from", "at", "on", "por", "by"}
)
# "x3 do bau": a quantity followed by a place, not an item
_PLACE_PREPOSITIONS = frozenset({"do", "da", "dos", "das", "de"})

_WORDS = r"[^\W\d][\w]*(?:[ \t]+[^\W\d][\w]*){0,3}"
_QTY = r"\d[\d.,]*"

_INVENTORY_PATTERNS: list[tuple[re.Pattern[str], bool]] = [
    # (pattern, item text comes before the quantity)
    (
        re.compile(
            rf"item\s+(?:adicionado|removido|inserido|added|removed|inserted)\s*:?\s*"
            rf"(?P<item>{_WORDS})\s*[x×]\s*(?P<qty>{_QTY})",
            re.IGNORECASE,
        ),
        False,
    ),
    (re.compile(rf"(?<![\w.,])(?P<qty>{_QTY})\s*[x×]\s+(?P<item>{_WORDS})", re.IGNORECASE), False),
    (re.compile(rf"(?<!\w)[x×]\s*(?P<qty>{_QTY})\s+(?P<item>{_WORDS})", re.IGNORECASE), False),
    (re.compile(rf"(?P<item>{_WORDS})\s+[x×]\s*(?P<qty>{_QTY})\b", re.IGNORECASE), True),
]

_FIELD_ITEM = re.compile(rf"^(?P<item>.+?)\s*[x×]\s*(?P<qty>{_QTY})$", re.IGNORECASE)
_FIELD_ITEM_QTY_FIRST = re.compile(rf"^(?P<qty>{_QTY})\s*[x×]\s*(?P<item>.+)$", re.IGNORECASE)
_DOLLAR_AMOUNT = re.compile(r"\$\s*(?P<num>\d[\d.,]*)")
_BARE_NUMBER = re.compile(r"(?<![\w.,])(?P<num>\d[\d.,]*)")
_AUTHOR = re.compile(
    r"(?P<name>[^|\n]+?)\s*\|\s*(?:ACCOUNT|FIXO|ID)\s*:?\s*(?P<id>\d+)", re.IGNORECASE
)
_INLINE_AUTHOR = re.compile(r"(?:autor|author)\s*:\s*(?P<value>[^\n]+)", re.IGNORECASE)
_LEADING_NAME = re.compile(
    r"^\s*(?P<name>[^\W\d][\w]*(?:[ \t]+[^\W\d][\w]*){0,3}?)\s+"
    r"(?:[x×]\s*\d|\d|vendeu|adicionou|removeu|depositou|sacou|inseriu|retirou|"
    r"added|removed|deposited|withdrew|sold)",
    re.IGNORECASE,
)
_CODE_FENCE = re.compile(r"```(?:[a-zA-Z]*\n)?")
_THOUSANDS = re.compile(r"^\d{1,3}([.,])\d{3}(?:\1\d{3})*$")


def fold_text(text: str) -> str:
    """Lowercase and strip accents, keeping punctuation and spacing."""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()


def strip_code(value: str) -> str:
    """Remove fenced-block and inline code markers from a field value."""
    return _CODE_FENCE.sub("", value).replace("`", "").strip()


def parse_number(text: str) -> Decimal:
    """Parse a money figure written with either decimal separator.

    ``1,234.50`` and ``1.234,50`` both give 1234.50; ``160,5`` gives 160.5.
    Comma groups of exactly three digits (``1,500``) are thousands, as are
    repeated dots (``1.000.000``). A single dot is always decimal.
    """
    cleaned = text.strip().rstrip(".,")
    if "," in cleaned and "." in cleaned:
        decimal_sep = "," if cleaned.rfind(",") > cleaned.rfind(".") else "."
        thousands_sep = "." if decimal_sep == "," else ","
        cleaned = cleaned.replace(thousands_sep, "").replace(decimal_sep, ".")
    elif "," in cleaned:
        if _THOUSANDS.match(cleaned):
            cleaned = cleaned.replace(",", "")
        else:
            cleaned = cleaned.replace(",", ".")
    elif cleaned.count(".") > 1:
        cleaned = cleaned.replace(".", "")
    try:
        return Decimal(cleaned)
    except InvalidOperation as exc:
        raise ParseFailure(f"Invalid number: {text!r}", {"reason": "bad_number"}) from exc


def parse_quantity(text: str) -> int:
    digits = re.sub(r"[.,]", "", text.strip().rstrip(".,"))
    if not digits.isdigit():
        raise ParseFailure(f"Invalid quantity: {text!r}", {"reason": "bad_quantity"})
    return int(digits)


def detect_kind(text: str) -> ActivityKind | None:
    """Return the action whose keyword appears earliest in the text."""
    folded = fold_text(text)
    best: tuple[int, ActivityKind] | None = None
    for kind, pattern in _KIND_PATTERNS.items():
        match = pattern.search(folded)
        if match and (best is None or match.start() < best[0]):
            best = (match.start(), kind)
    return best[1] if best else None


def _clean_item(text: str, item_first: bool) -> str:
    words = text.split()
    if item_first:
        # Keep the words after the last action or stop word: "Maria adicionou trigo"
        for index in range(len(words) - 1, -1, -1):
            folded = fold_text(words[index])
            if folded in _ACTION_WORDS or folded in _ITEM_STOP_WORDS:
                words = words[index + 1 :]
                break
    elif words and fold_text(words[0]) in _PLACE_PREPOSITIONS:
        return ""
    else:
        kept = []
        for word in words:
            folded = fold_text(word)
            if folded in _ACTION_WORDS or folded in _ITEM_STOP_WORDS:
                break
            kept.append(word)
        words = kept
    return " ".join(words)


def parse_author(value: str) -> tuple[str, str | None]:
    """Split ``<name> | ACCOUNT:<digits>`` into name and account id."""
    text = strip_code(value)
    match = _AUTHOR.search(text)
    if match:
        return match.group("name").strip(), match.group("id")
    return text.strip(), None


@dataclass(frozen=True)
class ParsedCandidate:
    """Typed fields extracted from one record, before classification."""

    record_id: str
    kind: ActivityKind
    timestamp: datetime
    actor_name: str
    account_id: str | None = None
    raw_item: str | None = None
    quantity: int = 0
    amount: Decimal = Decimal("0")
    balance_after: Decimal | None = None
    action_note: str | None = None

    @property
    def category(self) -> ActivityCategory:
        return self.kind.category


@dataclass
class ParseReport:
    candidates: list[ParsedCandidate] = field(default_factory=list)
    failures: int = 0
    reasons: Counter[str] = field(default_factory=Counter)


class MessageParser:
    """Extracts activity candidates from chat-log records."""

    def __init__(self) -> None:
        self._logger = logger.bind(component="message_parser")

    def parse(self, record: RawLogRecord) -> ParsedCandidate:
        """Parse a single record.

        Raises:
            ParseFailure: If no action, item quantity or amount is recognized.
        """
        if record.has_embed:
            try:
                return self._parse_embed(record)
            except ParseFailure:
                if not record.content.strip():
                    raise
        if not record.content.strip():
            raise ParseFailure("Empty record", {"reason": "empty", "record_id": record.id})
        return self._parse_free_text(record)

    def read_record(self, data: dict[str, Any]) -> RawLogRecord:
        """Build a RawLogRecord from an exported message.

        Raises:
            ParseFailure: If the id or timestamp is missing or unreadable.
        """
        try:
            return RawLogRecord.from_dict(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            record_id = data.get("id") if isinstance(data, dict) else None
            raise ParseFailure(
                f"Malformed record: {e}", {"reason": "bad_record", "record_id": record_id}
            ) from e

    def parse_batch(
        self, records: Iterable[RawLogRecord | dict[str, Any]]
    ) -> ParseReport:
        """Parse many records, dropping and counting the unparseable ones."""
        report = ParseReport()
        for item in records:
            try:
                record = item if isinstance(item, RawLogRecord) else self.read_record(item)
                report.candidates.append(self.parse(record))
            except ParseFailure as e:
                details = e.details or {}
                reason = details.get("reason", "unknown")
                report.failures += 1
                report.reasons[reason] += 1
                self._logger.debug(
                    "record_unparseable",
                    record_id=details.get("record_id") or getattr(item, "id", None),
                    reason=reason,
                )
        if report.failures:
            self._logger.info(
                "batch_parsed",
                parsed=len(report.candidates),
                failures=report.failures,
                reasons=dict(report.reasons),
            )
        return report

    # === Embedded field lists ===

    def _parse_embed(self, record: RawLogRecord) -> ParsedCandidate:
        fields = {self._field_role(f): f for f in reversed(record.embed_fields)}
        fields.pop(None, None)

        kind = detect_kind(record.embed_title or "")
        if kind is None:
            kind = detect_kind(" ".join(f.name for f in record.embed_fields))
        if kind is None:
            raise ParseFailure(
                "Unrecognized embed title",
                {"reason": "unknown_action", "record_id": record.id, "title": record.embed_title},
            )

        actor_name, account_id = "", None
        if "author" in fields:
            actor_name, account_id = parse_author(fields["author"].value)
        action_note = strip_code(fields["action"].value) if "action" in fields else None
        if not actor_name and action_note:
            leading = _LEADING_NAME.match(action_note)
            if leading:
                actor_name = leading.group("name").strip()
        if not actor_name:
            actor_name = self._fallback_author(record)

        balance_after = None
        if "balance" in fields:
            balance_after = self._extract_amount(fields["balance"].value, allow_bare=True)

        if kind.category == ActivityCategory.INVENTORY:
            if "item" not in fields:
                raise ParseFailure(
                    "Embed has no item field", {"reason": "missing_item", "record_id": record.id}
                )
            raw_item, quantity = self._parse_item_value(fields["item"].value, record.id)
            return ParsedCandidate(
                record_id=record.id,
                kind=kind,
                timestamp=record.timestamp,
                actor_name=actor_name,
                account_id=account_id,
                raw_item=raw_item,
                quantity=quantity,
                balance_after=balance_after,
                action_note=action_note,
            )

        amount = None
        if "amount" in fields:
            amount = self._extract_amount(fields["amount"].value, allow_bare=True)
        if amount is None:
            raise ParseFailure(
                "Embed has no amount field", {"reason": "missing_amount", "record_id": record.id}
            )
        return ParsedCandidate(
            record_id=record.id,
            kind=kind,
            timestamp=record.timestamp,
            actor_name=actor_name,
            account_id=account_id,
            amount=amount,
            balance_after=balance_after,
            action_note=action_note,
        )

    @staticmethod
    def _field_role(embed_field: EmbedField) -> str | None:
        name = fold_text(embed_field.name)
        if "item" in name:
            return "item"
        if "saldo" in name or "balance" in name:
            return "balance"
        if "valor" in name or "amount" in name or "quantia" in name:
            return "amount"
        if "autor" in name or "author" in name:
            return "author"
        if "acao" in name or "action" in name:
            return "action"
        return None

    @staticmethod
    def _parse_item_value(value: str, record_id: str) -> tuple[str, int]:
        text = strip_code(value)
        match = _FIELD_ITEM.match(text) or _FIELD_ITEM_QTY_FIRST.match(text)
        if not match:
            raise ParseFailure(
                f"Item field has no quantity: {text!r}",
                {"reason": "missing_quantity", "record_id": record_id},
            )
        return match.group("item").strip(), parse_quantity(match.group("qty"))

    @staticmethod
    def _extract_amount(value: str, allow_bare: bool = False) -> Decimal | None:
        text = strip_code(value)
        match = _DOLLAR_AMOUNT.search(text)
        if match is None and allow_bare:
            match = _BARE_NUMBER.search(text)
        if match is None:
            return None
        return parse_number(match.group("num"))

    @staticmethod
    def _fallback_author(record: RawLogRecord) -> str:
        if record.author and not record.author_is_bot:
            return record.author.strip()
        return ""

    # === Free text ===

    def _parse_free_text(self, record: RawLogRecord) -> ParsedCandidate:
        content = record.content
        kind = detect_kind(content)
        if kind is None:
            raise ParseFailure(
                "No action keyword in message",
                {"reason": "unknown_action", "record_id": record.id},
            )

        actor_name, account_id = "", None
        inline = _INLINE_AUTHOR.search(content)
        if inline:
            actor_name, account_id = parse_author(inline.group("value"))
        if not actor_name:
            actor_name = self._fallback_author(record)
        if not actor_name:
            leading = _LEADING_NAME.match(content)
            if leading:
                actor_name = leading.group("name").strip()
        if not actor_name:
            actor_name = UNKNOWN_ACTOR

        if kind.category == ActivityCategory.INVENTORY:
            raw_item, quantity = self._scan_inventory(content, record.id)
            return ParsedCandidate(
                record_id=record.id,
                kind=kind,
                timestamp=record.timestamp,
                actor_name=actor_name,
                account_id=account_id,
                raw_item=raw_item,
                quantity=quantity,
            )

        amount = self._extract_amount(content)
        if amount is None:
            raise ParseFailure(
                "No amount in financial message",
                {"reason": "missing_amount", "record_id": record.id},
            )
        return ParsedCandidate(
            record_id=record.id,
            kind=kind,
            timestamp=record.timestamp,
            actor_name=actor_name,
            account_id=account_id,
            amount=amount,
        )

    @staticmethod
    def _scan_inventory(content: str, record_id: str) -> tuple[str, int]:
        for pattern, item_first in _INVENTORY_PATTERNS:
            for match in pattern.finditer(content):
                item = _clean_item(match.group("item"), item_first)
                if item:
                    return item, parse_quantity(match.group("qty"))
        raise ParseFailure(
            "No item quantity in inventory message",
            {"reason": "missing_quantity", "record_id": record_id},
        )
