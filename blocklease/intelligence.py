"""
Document intelligence adapter — multimodal extraction via the OpenAI API.

The model is used as a "smart scanner": it reads contracts, title deeds
and utility bills, and answers fuzzy questions (are these the same
address? which of these units is meant?). BUT we never trust it blindly:

  - Contract fingerprints and structured extractions FAIL LOUDLY
    (ExtractionError) — an empty or malformed answer is never defaulted.
  - Authenticity is advisory: unusable answers coerce to 0.
  - Address comparison FAILS CLOSED: anything but a literal "true" is False.
  - Unit matching only returns ids that were actually offered.

Every call is a single stateless request with a bounded timeout, so calls
for different documents may run in parallel.
"""

from __future__ import annotations

import base64
import json
import logging
import math
import re
from typing import Any, Sequence

import openai
from openai import OpenAI

from .config import Settings
from .exceptions import ExtractionError
from .models import DeedData, Document, Unit, UtilityBillData

logger = logging.getLogger(__name__)


# ─── Prompts ─────────────────────────────────────────────────────────

FINGERPRINT_PROMPT = """\
Analyze the attached rental agreement. Extract the following details and \
return them as a single-line, pipe-separated string. Do NOT add any \
explanation, conversational text, or markdown formatting. The required \
format is exactly: Landlord: [Full Name] | Tenant: [Full Name] | \
Unit: [Unit Number and Full Address] | From: [Start Date DD/MM/YYYY] | \
To: [End Date DD/MM/YYYY] | Rent: [Monthly Rent as a number]"""

AUTHENTICITY_PROMPT = """\
Act as a forensic document analyst. Analyze the attached document for signs \
of digital manipulation, photoshopping, or being a photo of a screen (e.g., \
moire patterns, screen glare). Look for inconsistent lighting, pixelation, \
and unnatural text. Provide a confidence score as a percentage of how \
authentic the document appears. Respond with ONLY the number. For example: 98.5"""

DEED_PROMPT = """\
Analyze the attached property title deed. Extract the full name of the \
current owner and the full property address. Respond with ONLY a valid JSON \
object with keys "ownerName" and "propertyAddress". For example: \
{"ownerName": "Somchai Jaidee", "propertyAddress": "123 Sukhumvit Road, \
Khlong Toei, Bangkok 10110"}"""

UTILITY_BILL_PROMPT = """\
Analyze the attached utility bill (e.g., electricity, water, internet bill). \
Extract the full name and the full service address listed on the bill. \
Respond with ONLY a valid JSON object with keys "nameOnBill" and "addressOnBill"."""

ADDRESS_PROMPT = """\
You are an address validation expert. Address A is: "{a}". Address B is: \
"{b}". Do these two addresses refer to the same physical property, even with \
minor typos or formatting differences? Respond with only the word "true" or "false"."""

UNIT_MATCH_PROMPT = """\
I have text from a rental contract: "{query}". I also have a list of official \
units as JSON: {candidates}. Which single unit from the list is the most \
likely match for the text? Consider typos and extra words. Respond with ONLY \
the "id" of the best-matching unit. If no confident match, respond with "none"."""

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


class DocumentIntelligence:
    """Thin, failure-mapped wrapper around a chat-completions client.

    Usage:
        intelligence = DocumentIntelligence.from_settings(settings)
        fingerprint_text = intelligence.extract_fingerprint(document)
    """

    def __init__(
        self,
        client: Any | None = None,
        *,
        api_key: str | None = None,
        extraction_model: str = "gpt-5-mini",
        forensic_model: str = "gpt-5",
        timeout: float = 60.0,
        max_retries: int = 2,
    ):
        self._client = client
        self._api_key = api_key
        self.extraction_model = extraction_model
        self.forensic_model = forensic_model
        self.timeout = timeout
        self.max_retries = max_retries

    @classmethod
    def from_settings(cls, settings: Settings) -> DocumentIntelligence:
        return cls(
            api_key=settings.openai_api_key,
            extraction_model=settings.extraction_model,
            forensic_model=settings.forensic_model,
            timeout=settings.llm_timeout,
            max_retries=settings.llm_max_retries,
        )

    @property
    def client(self) -> Any:
        """The OpenAI client, created on first use."""
        if self._client is None:
            if not self._api_key:
                raise ExtractionError(
                    "Document analysis is not available right now.",
                    {"kind": "not_configured"},
                )
            self._client = OpenAI(
                api_key=self._api_key,
                timeout=self.timeout,
                max_retries=self.max_retries,
            )
        return self._client

    # ─── Public API ──────────────────────────────────────────────────

    def extract_fingerprint(self, document: Document) -> str:
        """Extract a contract fingerprint in codec serialization.

        Raises:
            ExtractionError: service failure, timeout, or empty answer.
        """
        logger.info("Extracting contract fingerprint from %s", document.filename)
        text = self._ask(self.extraction_model, FINGERPRINT_PROMPT, document)
        fingerprint = " ".join(_strip_fences(text).split())
        if not fingerprint:
            raise ExtractionError(
                "The contract could not be read. Please upload a clearer copy.",
                {"kind": "empty"},
            )
        logger.info("Fingerprint extracted: %s", fingerprint)
        return fingerprint

    def check_authenticity(self, document: Document) -> float:
        """Forensic plausibility score in [0, 100]. Unusable answers score 0."""
        try:
            text = self._ask(self.forensic_model, AUTHENTICITY_PROMPT, document)
        except ExtractionError as e:
            logger.warning("Authenticity check unavailable (%s), scoring 0", e.details.get("kind"))
            return 0.0

        score = _safe_float(text)
        if score is None:
            logger.warning("Non-numeric authenticity answer %r, scoring 0", text)
            return 0.0
        score = min(max(score, 0.0), 100.0)
        logger.info("Authenticity score for %s: %.1f%%", document.filename, score)
        return score

    def extract_deed_data(self, document: Document) -> DeedData:
        """Owner name and property address from a title deed."""
        data = self._ask_json(self.extraction_model, DEED_PROMPT, document)
        owner = _required_str(data, "ownerName", "title deed")
        address = _required_str(data, "propertyAddress", "title deed")
        logger.info("Deed extracted: owner=%r", owner)
        return DeedData(owner_name=owner, property_address=address)

    def extract_utility_bill_data(self, document: Document) -> UtilityBillData:
        """Account holder name and service address from a utility bill."""
        data = self._ask_json(self.extraction_model, UTILITY_BILL_PROMPT, document)
        name = _required_str(data, "nameOnBill", "utility bill")
        address = _required_str(data, "addressOnBill", "utility bill")
        logger.info("Utility bill extracted: name=%r", name)
        return UtilityBillData(name_on_bill=name, address_on_bill=address)

    def compare_addresses(self, a: str, b: str) -> bool:
        """Fuzzy same-property check. Any error or unclear answer is False."""
        try:
            text = self._ask(self.extraction_model, ADDRESS_PROMPT.format(a=a, b=b))
        except ExtractionError:
            logger.warning("Address comparison unavailable, treating as mismatch")
            return False
        verdict = _strip_fences(text).strip().strip(".\"'").lower()
        logger.info("Address comparison %r vs %r: %s", a, b, verdict)
        return verdict == "true"

    def find_best_unit_match(
        self, query_text: str, candidate_units: Sequence[Unit]
    ) -> str | None:
        """Pick the unit the contract text refers to, or None.

        The answer must be one of the offered ids; anything else (including
        a plausible-looking id that was never offered) counts as no match.
        """
        if not candidate_units:
            return None

        candidates = [
            {"id": u.id, "unitNumber": u.unit_number, "address": u.address.one_line()}
            for u in candidate_units
        ]
        prompt = UNIT_MATCH_PROMPT.format(
            query=query_text, candidates=json.dumps(candidates, ensure_ascii=False)
        )
        try:
            text = self._ask(self.extraction_model, prompt)
        except ExtractionError:
            logger.warning("Unit matching unavailable, treating as no match")
            return None

        answer = _strip_fences(text).strip().strip(".\"'")
        if answer.lower() == "none" or answer not in {u.id for u in candidate_units}:
            logger.info("No confident unit match for %r (answer: %r)", query_text, answer)
            return None
        logger.info("Unit match for %r: %s", query_text, answer)
        return answer

    # ─── Transport ───────────────────────────────────────────────────

    def _ask(
        self,
        model: str,
        prompt: str,
        document: Document | None = None,
        json_mode: bool = False,
    ) -> str:
        """One chat-completions round trip, with provider errors mapped."""
        content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
        if document is not None:
            content.append(_document_part(document))

        kwargs: dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": content}],
                timeout=self.timeout,
                **kwargs,
            )
        except openai.APITimeoutError as e:
            logger.error("Model call timed out after %ss: %s", self.timeout, e)
            raise ExtractionError(
                "Document analysis timed out. Please try again.", {"kind": "timeout"}
            ) from e
        except openai.OpenAIError as e:
            logger.error("Model call failed: %s", e)
            raise ExtractionError(
                "Document analysis failed. Please try again.", {"kind": "service"}
            ) from e

        text = response.choices[0].message.content if response.choices else None
        if not text or not text.strip():
            logger.error("Model returned empty content")
            raise ExtractionError(
                "Document analysis returned no result.", {"kind": "empty"}
            )
        return text.strip()

    def _ask_json(self, model: str, prompt: str, document: Document) -> dict[str, Any]:
        text = self._ask(model, prompt, document, json_mode=True)
        try:
            data = json.loads(_strip_fences(text))
        except json.JSONDecodeError as e:
            logger.error("Model returned malformed JSON: %r", text[:200])
            raise ExtractionError(
                "The document could not be read. Please upload a clearer copy.",
                {"kind": "malformed"},
            ) from e
        if not isinstance(data, dict):
            raise ExtractionError(
                "The document could not be read. Please upload a clearer copy.",
                {"kind": "malformed"},
            )
        return data


# ─── Helpers ─────────────────────────────────────────────────────────


def _document_part(document: Document) -> dict[str, Any]:
    """Inline a document as a chat content part."""
    encoded = base64.b64encode(document.content).decode("ascii")
    data_url = f"data:{document.mime_type};base64,{encoded}"
    if document.mime_type.startswith("image/"):
        return {"type": "image_url", "image_url": {"url": data_url}}
    if document.mime_type.startswith("text/"):
        return {"type": "text", "text": document.content.decode("utf-8", errors="replace")}
    return {"type": "file", "file": {"filename": document.filename, "file_data": data_url}}


def _strip_fences(text: str) -> str:
    return _FENCE_RE.sub("", text).strip()


def _safe_float(value: str) -> float | None:
    """Parse a bare number, tolerating a trailing percent sign."""
    try:
        number = float(value.strip().rstrip("%").strip())
    except (ValueError, AttributeError):
        return None
    return number if math.isfinite(number) else None


def _required_str(data: dict[str, Any], key: str, source: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        logger.error("Field %r missing from %s extraction", key, source)
        raise ExtractionError(
            f"Could not read the required details from the {source}.",
            {"kind": "malformed", "field": key},
        )
    return value.strip()
