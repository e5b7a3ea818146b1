import re
from collections import Counter

from shop_translator.protector import LONE_TOKEN_RE, TOKEN_RE

# product option fields where short capitalised values (Size, Color) are ordinary copy
SKIP_BRAND_CHECK_FIELDS = frozenset({"name", "value", "optionName", "valueName"})

BRAND_WORDS = frozenset(
    {
        # tech
        "apple", "iphone", "ipad", "macbook", "macbook pro", "imac", "airpods", "samsung", "galaxy", "pixel",
        "google", "google pixel", "google nest", "chromecast", "microsoft", "surface", "xbox", "playstation",
        "sony", "ps4", "ps5", "nintendo", "lenovo", "thinkpad", "asus", "dell", "alienware", "hp", "acer",
        "msi", "razer", "huawei", "matebook", "xiaomi", "redmi", "oppo", "vivo", "oneplus", "motorola", "nokia",
        # fashion
        "gucci", "prada", "louis vuitton", "chanel", "hermes", "burberry", "versace", "armani", "dior",
        "balenciaga", "fendi", "celine", "ysl", "saint laurent", "givenchy", "loewe", "valentino", "tiffany",
        "cartier",
        # sport
        "nike", "adidas", "puma", "reebok", "under armour", "new balance", "asics", "fila", "salomon", "columbia",
        # auto
        "tesla", "bmw", "audi", "mercedes", "mercedes-benz", "toyota", "honda", "nissan", "lexus", "porsche",
        "volkswagen", "ford", "chevrolet", "mazda", "subaru", "hyundai", "kia", "ferrari", "lamborghini",
        # watches
        "rolex", "omega", "patek philippe", "bvlgari", "breitling", "tag heuer",
        # food and drink
        "coca-cola", "pepsi", "starbucks", "mcdonalds", "kfc",
        # commerce and payments
        "shopify", "amazon", "alibaba", "aliexpress", "paypal", "stripe", "visa", "mastercard",
        # tech terms
        "usb", "hdmi", "bluetooth", "wifi", "gps", "nfc", "led", "oled", "lcd", "amoled",
        "cpu", "gpu", "ram", "ssd", "hdd", "api", "sdk", "ios",
        # sizes and units
        "xs", "xl", "xxl", "xxxl", "oz", "lb", "kg", "mm", "cm",
    }
)

_SKU_RE = re.compile(r"^[A-Z]{2,}[-_]?\d+")
_ACRONYM_RE = re.compile(r"^[A-Z]{2,}$")
_BRAND_LITERAL_RE = re.compile(r"[®™]|^(Shopify|Amazon|Google|Facebook|Apple|Microsoft)", re.IGNORECASE)

_TAG_RE = re.compile(r"<[^>]+>")
_TEMPLATE_RE = re.compile(r"\{\{.*?\}\}|\{%.*?%\}", re.DOTALL)
_LETTER_RE = re.compile(r"[^\W\d_]")

_TERM_RE = re.compile(r"\b(?:[A-Z][a-zA-Z0-9]+(?:[ -][A-Z][a-zA-Z0-9]+)+|[A-Z]{2,}\d*|[a-zA-Z]+\d+[a-zA-Z]*)\b")
_LEADING_ARTICLE_RE = re.compile(r"^(?:The|A|An|Our|Your|This|These|Its) ")

BRAND_CHECK_MAX_CHARS = 50


def check_brand_words(text: str, field_type: str | None = None) -> str | None:
    """Return a skip reason when a short value should stay in its source form."""
    trimmed = text.strip()
    if not trimmed or len(trimmed) >= BRAND_CHECK_MAX_CHARS:
        return None
    if field_type and field_type in SKIP_BRAND_CHECK_FIELDS:
        return None
    if field_type == "vendor":
        return "vendor_field_protection"
    if trimmed.lower() in BRAND_WORDS:
        return "brand_word"
    if _SKU_RE.match(trimmed):
        return "product_code_pattern"
    if _ACRONYM_RE.match(trimmed):
        return "technical_acronym"
    return None


def is_brand_literal(value: str) -> bool:
    return bool(_BRAND_LITERAL_RE.search(value))


def strip_non_linguistic(text: str) -> str:
    text = TOKEN_RE.sub(" ", text)
    text = _TEMPLATE_RE.sub(" ", text)
    return _TAG_RE.sub(" ", text)


def has_prose(text: str) -> bool:
    return bool(_LETTER_RE.search(strip_non_linguistic(text)))


def detect_placeholder_corruption(sent: str, received: str) -> bool:
    """True when the provider mangled protection tokens instead of translating."""
    stripped = received.strip()
    if LONE_TOKEN_RE.match(stripped) and stripped != sent.strip():
        return True
    sent_tokens = Counter(TOKEN_RE.findall(sent))
    received_tokens = Counter(TOKEN_RE.findall(received))
    if any(t not in sent_tokens for t in received_tokens):
        return True
    if any(received_tokens[t] != n for t, n in sent_tokens.items()):
        return True
    # a prefix-shaped fragment that is not a whole token
    return "__PROTECTED_" in TOKEN_RE.sub("", received) and "__PROTECTED_" not in TOKEN_RE.sub("", sent)


def extract_terminology(text: str, limit: int = 20) -> tuple[str, ...]:
    """Brand names, model numbers and capitalised phrases to keep consistent across chunks."""
    plain = strip_non_linguistic(text)
    seen: dict[str, None] = {}
    for m in _TERM_RE.finditer(plain):
        term = _LEADING_ARTICLE_RE.sub("", m.group(0))
        if term not in seen:
            seen[term] = None
    for word in re.findall(r"[A-Za-z][A-Za-z-]+", plain):
        if word.lower() in BRAND_WORDS and word not in seen:
            seen[word] = None
    return tuple(seen)[:limit]
