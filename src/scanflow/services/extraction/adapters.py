from dataclasses import dataclass, field, asdict
from typing import Any, Optional
from scanflow.shared.errors import InvalidInputError
from scanflow.shared.utils import to_snake_case

REVIEW_CONFIDENCE = 0.7

@dataclass
class FieldValue:
    value: Any
    confidence: Optional[float] = None
    needs_review: bool = False
    is_handwritten: bool = False

@dataclass
class ExtractionResult:
    fields: dict = field(default_factory=dict)
    line_items: list = field(default_factory=list)
    document_confidence: Optional[float] = None
    analysis: Optional[dict] = None

    def fields_as_dict(self):
        return {name: asdict(value) for name, value in self.fields.items()}

    def needs_review(self):
        return any(value.needs_review for value in self.fields.values())


def _as_float(value):
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None

def _mean_confidence(fields):
    scores = [value.confidence for value in fields.values() if value.confidence is not None]
    return sum(scores) / len(scores) if scores else None


class ExtractionAdapter:
    """Turns one integration's raw response into an ExtractionResult."""
    name = None

    def parse(self, response: dict) -> ExtractionResult:
        raise NotImplementedError


class StandardAdapter(ExtractionAdapter):
    name = 'standard'

    def parse(self, response):
        if not isinstance(response, dict) or not isinstance(response.get('fields'), dict):
            raise InvalidInputError("Extraction response has no 'fields' object")

        fields = {}
        for raw_name, raw_value in response['fields'].items():
            if isinstance(raw_value, dict):
                confidence = _as_float(raw_value.get('confidence'))
                fields[to_snake_case(raw_name)] = FieldValue(
                    value=raw_value.get('value'),
                    confidence=confidence,
                    needs_review=bool(raw_value.get('needs_review', confidence is not None and confidence < REVIEW_CONFIDENCE)),
                    is_handwritten=bool(raw_value.get('is_handwritten', False)),
                )
            else:
                fields[to_snake_case(raw_name)] = FieldValue(value=raw_value)

        confidence = _as_float(response.get('confidence'))
        return ExtractionResult(
            fields=fields,
            line_items=response.get('line_items') or [],
            document_confidence=confidence if confidence is not None else _mean_confidence(fields),
            analysis=response.get('analysis'),
        )


class LegacyOcrAdapter(ExtractionAdapter):
    """Flat ``extracted_metadata`` responses with confidences kept alongside."""
    name = 'legacy_ocr'

    def parse(self, response):
        if not isinstance(response, dict):
            raise InvalidInputError("Extraction response is not an object")
        metadata = response.get('extracted_metadata', response.get('extractedMetadata'))
        if not isinstance(metadata, dict):
            raise InvalidInputError("Extraction response has no extracted metadata")

        field_confidence = response.get('field_confidence') or response.get('fieldConfidence') or {}
        handwritten = {to_snake_case(name) for name in response.get('handwritten_fields') or []}
        flagged = {to_snake_case(name) for name in response.get('review_fields') or []}

        fields = {}
        for raw_name, value in metadata.items():
            name = to_snake_case(raw_name)
            confidence = _as_float(field_confidence.get(raw_name, field_confidence.get(name)))
            fields[name] = FieldValue(
                value=value,
                confidence=confidence,
                needs_review=name in flagged or (confidence is not None and confidence < REVIEW_CONFIDENCE),
                is_handwritten=name in handwritten,
            )

        confidence = _as_float(response.get('overall_confidence', response.get('confidence')))
        return ExtractionResult(
            fields=fields,
            line_items=response.get('line_items') or response.get('lineItems') or [],
            document_confidence=confidence if confidence is not None else _mean_confidence(fields),
            analysis=response.get('analysis') or response.get('documentAnalysis'),
        )


ADAPTERS = {
    StandardAdapter.name: StandardAdapter,
    LegacyOcrAdapter.name: LegacyOcrAdapter,
}

def get_adapter(name) -> ExtractionAdapter:
    if name not in ADAPTERS:
        raise ValueError(f"Unknown extraction provider: {name}")
    return ADAPTERS[name]()
