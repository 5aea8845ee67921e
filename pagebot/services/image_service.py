import re
from dataclasses import dataclass
from typing import Iterable, Optional

from pagebot.logging_config import get_logger
from pagebot.services.lead_service import parse_json_object
from pagebot.services.llm import LLMError, LLMProvider
from pagebot.services.result import Result

logger = get_logger("image_service")

RECEIPT_VERIFY_MIN_CONFIDENCE = 0.5
RECEIPT_CONFIRM_MIN_CONFIDENCE = 0.7

VERIFIED = "verified"
MISMATCH = "mismatch"
UNKNOWN = "unknown"

ANALYSIS_PROMPT = """Look at this image a customer sent to a shop's Messenger page.
Decide whether it is a payment receipt or proof of payment (GCash, Maya, bank transfer, etc.).
Respond with ONLY a JSON object:
{"isReceipt": true/false, "confidence": 0.0-1.0, "details": "short description",
 "extractedAmount": "amount or null", "extractedDate": "date or null",
 "receiverName": "name of the account paid to, exactly as shown (keep * masking) or null",
 "receiverNumber": "account/mobile number paid to or null", "paymentPlatform": "platform or null"}"""


@dataclass
class ImageAnalysisResult:
    is_receipt: bool = False
    confidence: float = 0.0
    details: Optional[str] = None
    extracted_amount: Optional[str] = None
    extracted_date: Optional[str] = None
    receiver_name: Optional[str] = None
    receiver_number: Optional[str] = None
    payment_platform: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ImageAnalysisResult":
        try:
            confidence = float(data.get("confidence") or 0)
        except (TypeError, ValueError):
            confidence = 0.0

        def text(key: str) -> Optional[str]:
            value = data.get(key)
            return str(value) if value not in (None, "", "null") else None

        return cls(
            is_receipt=bool(data.get("isReceipt")),
            confidence=max(0.0, min(confidence, 1.0)),
            details=text("details"),
            extracted_amount=text("extractedAmount"),
            extracted_date=text("extractedDate"),
            receiver_name=text("receiverName"),
            receiver_number=text("receiverNumber"),
            payment_platform=text("paymentPlatform"),
        )


@dataclass
class ImageContext:
    """What the AI responder is told about an image the customer sent."""

    is_receipt: bool
    confidence: float
    image_url: Optional[str] = None
    details: Optional[str] = None
    extracted_amount: Optional[str] = None
    extracted_date: Optional[str] = None
    receiver_name: Optional[str] = None
    receiver_number: Optional[str] = None
    payment_platform: Optional[str] = None
    verification_status: Optional[str] = None
    verification_details: Optional[str] = None

    @classmethod
    def from_analysis(cls, result: ImageAnalysisResult, image_url: str) -> "ImageContext":
        return cls(
            is_receipt=result.is_receipt,
            confidence=result.confidence,
            image_url=image_url,
            details=result.details,
            extracted_amount=result.extracted_amount,
            extracted_date=result.extracted_date,
            receiver_name=result.receiver_name,
            receiver_number=result.receiver_number,
            payment_platform=result.payment_platform,
        )


def is_confirmed_receipt(result) -> bool:
    """True for a receipt seen with high confidence; works on analysis results and image contexts."""
    return result.is_receipt and result.confidence >= RECEIPT_CONFIRM_MIN_CONFIDENCE


def normalize_account_number(number: str) -> str:
    return re.sub(r"[\s\-()]", "", number or "")


def normalize_account_name(name: str) -> str:
    return re.sub(r"[^a-z]", "", (name or "").lower())


def account_numbers_match(extracted: str, stored: str) -> bool:
    """Containment either way, or same last four digits on a plausibly full number."""
    extracted = normalize_account_number(extracted)
    stored = normalize_account_number(stored)
    if not extracted or not stored:
        return False
    if extracted in stored or stored in extracted:
        return True
    return extracted[-4:] == stored[-4:] and len(extracted) >= 8


def account_names_match(extracted: str, stored: str) -> bool:
    extracted = normalize_account_name(extracted)
    stored = normalize_account_name(stored)
    if not extracted or not stored:
        return False
    return extracted in stored or stored in extracted


def verify_receipt(result: ImageAnalysisResult, payment_methods: Iterable) -> tuple[str, str]:
    """Match a receipt's receiver against our payment accounts.

    The account number is tried first. The name is only used when it is not
    masked, because wallets often show names like "JO*N AN***O".
    """
    methods = list(payment_methods)
    if not methods:
        return UNKNOWN, "No payment methods configured to verify against"

    matched, matched_by = None, ""
    if result.receiver_number:
        matched = next(
            (
                pm
                for pm in methods
                if pm.account_number and account_numbers_match(result.receiver_number, pm.account_number)
            ),
            None,
        )
        matched_by = "account number"

    if matched is None and result.receiver_name and "*" not in result.receiver_name:
        matched = next(
            (
                pm
                for pm in methods
                if pm.account_name and account_names_match(result.receiver_name, pm.account_name)
            ),
            None,
        )
        matched_by = "account name"

    if matched is not None:
        return VERIFIED, f"Payment sent to {matched.name} - {matched_by} matches our records!"

    if result.receiver_number:
        ours = ", ".join(f"{pm.name}: {pm.account_number}" for pm in methods if pm.account_number)
        return MISMATCH, f"Receipt shows payment to {result.receiver_number}, but our account numbers are: {ours}"

    return UNKNOWN, "Could not extract account number from receipt for full verification, but receipt looks valid"


class ImageAnalyzer:
    """Classifies an image URL with a vision-capable model."""

    def __init__(self, llm: Optional[LLMProvider], model: Optional[str] = None):
        self.llm = llm
        self.model = model

    async def analyze(self, image_url: str) -> Result[ImageAnalysisResult]:
        if self.llm is None:
            return Result.failure("No LLM configured", "no_llm")

        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": ANALYSIS_PROMPT},
                    {"type": "image_url", "image_url": {"url": image_url}},
                ],
            }
        ]
        try:
            response = await self.llm.generate(
                messages, model=self.model, temperature=0.1, max_tokens=400, json_mode=True
            )
        except LLMError as e:
            logger.error(f"Image analysis failed: {e}")
            return Result.from_exception(e, "llm_error")

        data = parse_json_object(response.content)
        if data is None:
            return Result.failure("Unparseable analysis", "bad_response")

        result = ImageAnalysisResult.from_dict(data)
        logger.info(
            "Image analyzed",
            extra={"context": {"is_receipt": result.is_receipt, "confidence": result.confidence}},
        )
        return Result.success(result)
