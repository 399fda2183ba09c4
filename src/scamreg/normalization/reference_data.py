"""Reference data for identifier normalization.

Lookup tables used by the rule-based normalizer: country dialing codes,
multi-part public suffixes, and the identifier type aliases accepted from
older clients.
"""

# ISO 3166 alpha-2 country code mapped to its international dialing code.
COUNTRY_DIALING_CODES = {
    "NP": "977",
    "IN": "91",
    "BD": "880",
    "PK": "92",
    "LK": "94",
    "BT": "975",
    "CN": "86",
    "US": "1",
    "CA": "1",
    "GB": "44",
    "AU": "61",
    "AE": "971",
    "QA": "974",
    "SA": "966",
    "MY": "60",
    "SG": "65",
    "JP": "81",
    "KR": "82",
    "DE": "49",
    "FR": "33",
    "NG": "234",
}

# Dialing code back to a representative country, longest codes first when matching.
DIALING_CODE_COUNTRIES = {
    "977": "NP",
    "91": "IN",
    "880": "BD",
    "92": "PK",
    "94": "LK",
    "975": "BT",
    "86": "CN",
    "1": "US",
    "44": "GB",
    "61": "AU",
    "971": "AE",
    "974": "QA",
    "966": "SA",
    "60": "MY",
    "65": "SG",
    "81": "JP",
    "82": "KR",
    "49": "DE",
    "33": "FR",
    "234": "NG",
}

# Public suffixes that span two labels; the registrable domain keeps one more label.
MULTI_PART_SUFFIXES = frozenset(
    {
        "com.np",
        "org.np",
        "net.np",
        "edu.np",
        "gov.np",
        "co.in",
        "org.in",
        "net.in",
        "gov.in",
        "co.uk",
        "org.uk",
        "ac.uk",
        "gov.uk",
        "com.au",
        "net.au",
        "org.au",
        "com.bd",
        "com.pk",
        "com.cn",
        "co.jp",
        "co.kr",
        "com.sg",
        "com.my",
        "co.nz",
        "com.br",
    }
)

# Identifier type aliases sent by mobile and web clients.
IDENTIFIER_TYPE_ALIASES = {
    "phone": "phone",
    "mobile": "phone",
    "whatsapp": "phone",
    "viber": "phone",
    "telegram_phone": "phone",
    "email": "email",
    "handle": "handle",
    "instagram": "handle",
    "facebook": "handle",
    "twitter": "handle",
    "tiktok": "handle",
    "telegram": "handle",
    "social_media": "handle",
    "url": "url",
    "website": "url",
    "domain": "url",
    "other": "other",
}
