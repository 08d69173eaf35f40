import re
from rapidfuzz.distance import JaroWinkler, Levenshtein

# composite fields and the extracted fields they are built from
FIELD_SOURCES = {
    'name': ['name', 'printed_name', 'full_name'],
    'address': ['address', 'city', 'zip'],
}

def normalize_text(value) -> str:
    if value is None:
        return ''
    text = str(value).upper().strip()
    text = re.sub(r'[^\w\s]', '', text)
    return re.sub(r'\s+', ' ', text).strip()

def name_similarity(a: str, b: str) -> float:
    a, b = normalize_text(a), normalize_text(b)
    if not a or not b:
        return 0.0
    return float(JaroWinkler.normalized_similarity(a, b))

def text_similarity(a: str, b: str) -> float:
    a, b = normalize_text(a), normalize_text(b)
    if not a or not b:
        return 0.0
    return float(Levenshtein.normalized_similarity(a, b))

DEFAULT_COMPARATORS = {
    'name': name_similarity,
}

def comparator_for(field_name, comparators=None):
    comparators = comparators or DEFAULT_COMPARATORS
    return comparators.get(field_name, DEFAULT_COMPARATORS.get(field_name, text_similarity))

def field_value(document, field_name):
    """Value of a (possibly composite) field; ``address`` joins its parts."""
    sources = FIELD_SOURCES.get(field_name, [field_name])
    if field_name == 'name':
        for source in sources:
            value = document.field_value(source)
            if value:
                return str(value)
        return ''
    parts = [str(document.field_value(source)) for source in sources if document.field_value(source)]
    return ' '.join(parts)
