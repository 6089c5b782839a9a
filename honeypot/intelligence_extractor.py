"""
INTELLIGENCE EXTRACTOR - Deterministic regex extraction for Indian scam formats

EXTRACTS:
- UPI IDs (payment handles, never email addresses)
- Phone numbers (normalized to 10 digits, mobile prefixes 6-9)
- Bank account numbers (phone-like and date-like runs filtered, in that order)
- Suspicious URLs (shorteners, raw IPs, banking keywords, abuse TLDs, credential injection)
- Suspicious keywords (six topical categories)

Pure functions of the input text. No I/O, no session state.
The composite score computed here is the fast signal for the detector.
"""

import re
import logging
import ipaddress
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Set
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from .models import ExtractedIntelligence

logger = logging.getLogger(__name__)

# Free webmail providers: anything@<these> is an address, not a payment handle
EMAIL_PROVIDERS = ("gmail", "yahoo", "hotmail", "outlook", "email", "mail")

SHORTENER_DOMAINS = frozenset({
    "bit.ly", "tinyurl.com", "goo.gl", "t.co", "is.gd", "v.gd", "short.link",
    "rebrand.ly", "cutt.ly", "rb.gy", "ow.ly", "tiny.cc", "shorturl.at",
})

ABUSE_TLDS = frozenset({"xyz", "tk", "ml", "ga", "cf", "gq", "top", "buzz"})

URL_KEYWORDS = re.compile(r"bank|verify|update|secure|login|account|confirm|kyc", re.IGNORECASE)

SUSPICIOUS_KEYWORDS: Dict[str, List[str]] = {
    "urgency": ["urgent", "immediately", "now", "hurry", "limited time", "expires", "act now", "quick"],
    "money": ["pay", "payment", "transfer", "send money", "rupees", "rs", "₹", "cash", "amount"],
    "prizes": ["won", "winner", "lottery", "prize", "reward", "cashback", "bonus", "lucky", "jackpot"],
    "security": ["otp", "pin", "password", "verify", "blocked", "suspended", "kyc", "update", "security"],
    "offers": ["free", "discount", "offer", "deal", "scheme", "investment", "returns", "profit", "guaranteed"],
    "banking": ["account", "bank", "credit", "debit", "card", "upi", "paytm", "phonepe", "gpay"],
}

# Score weights
UPI_WEIGHT = 30
PHONE_WEIGHT = 15
SUSPICIOUS_URL_WEIGHT = 40
KEYWORD_WEIGHT = 5
KEYWORD_CAP = 30
MAX_SCORE = 100


@dataclass(frozen=True)
class IntelligenceRecord:
    """
    Five independent, deduplicated sets of extracted values.
    merge() is set union per field: idempotent, commutative, monotonic.
    """
    bank_accounts: FrozenSet[str] = frozenset()
    upi_ids: FrozenSet[str] = frozenset()
    phishing_links: FrozenSet[str] = frozenset()
    phone_numbers: FrozenSet[str] = frozenset()
    suspicious_keywords: FrozenSet[str] = frozenset()

    def merge(self, other: "IntelligenceRecord") -> "IntelligenceRecord":
        return IntelligenceRecord(
            bank_accounts=self.bank_accounts | other.bank_accounts,
            upi_ids=self.upi_ids | other.upi_ids,
            phishing_links=self.phishing_links | other.phishing_links,
            phone_numbers=self.phone_numbers | other.phone_numbers,
            suspicious_keywords=self.suspicious_keywords | other.suspicious_keywords,
        )

    def has_actionable_intel(self) -> bool:
        """Any bank account, UPI id, phone number or suspicious link"""
        return bool(self.bank_accounts or self.upi_ids or self.phone_numbers or self.phishing_links)

    def counts(self) -> Dict[str, int]:
        return {
            "bankAccounts": len(self.bank_accounts),
            "upiIds": len(self.upi_ids),
            "phishingLinks": len(self.phishing_links),
            "phoneNumbers": len(self.phone_numbers),
            "suspiciousKeywords": len(self.suspicious_keywords),
        }

    def to_model(self) -> ExtractedIntelligence:
        return ExtractedIntelligence(
            bankAccounts=sorted(self.bank_accounts),
            upiIds=sorted(self.upi_ids),
            phishingLinks=sorted(self.phishing_links),
            phoneNumbers=sorted(self.phone_numbers),
            suspiciousKeywords=sorted(self.suspicious_keywords),
        )

    @classmethod
    def from_model(cls, model: ExtractedIntelligence) -> "IntelligenceRecord":
        return cls(
            bank_accounts=frozenset(model.bankAccounts),
            upi_ids=frozenset(model.upiIds),
            phishing_links=frozenset(model.phishingLinks),
            phone_numbers=frozenset(model.phoneNumbers),
            suspicious_keywords=frozenset(model.suspiciousKeywords),
        )


@dataclass
class ScamScore:
    """Composite 0-100 score with per-category breakdown"""
    score: int
    breakdown: Dict[str, int]
    intelligence: IntelligenceRecord
    categories: Dict[str, Set[str]] = field(default_factory=dict)


def normalize_phone(value: str) -> Optional[str]:
    """
    Strip separators and the +91 / 91 / 0 prefix.
    Returns the 10-digit number, or None if it isn't a valid mobile number.
    Idempotent: a normalized number normalizes to itself.
    """
    digits = re.sub(r"\D", "", value or "")
    if len(digits) == 12 and digits.startswith("91"):
        digits = digits[2:]
    elif len(digits) == 11 and digits.startswith("0"):
        digits = digits[1:]
    if len(digits) == 10 and digits[0] in "6789":
        return digits
    return None


def looks_like_date(value: str) -> bool:
    """8-digit DDMMYYYY run that is a real calendar date"""
    if len(value) != 8 or not value.isdigit():
        return False
    try:
        parsed = datetime.strptime(value, "%d%m%Y")
    except ValueError:
        return False
    return 1900 <= parsed.year <= 2099


def is_suspicious_url(url: str) -> bool:
    """Shortener host, IP-literal host, banking keyword, abuse TLD or '@' in authority"""
    try:
        parts = urlsplit(url)
        host = (parts.hostname or "").lower()
    except ValueError:
        return False
    if not host:
        return False

    if host in SHORTENER_DOMAINS or any(host.endswith("." + d) for d in SHORTENER_DOMAINS):
        return True
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        pass
    if URL_KEYWORDS.search(host + parts.path):
        return True
    if host.rsplit(".", 1)[-1] in ABUSE_TLDS:
        return True
    return "@" in parts.netloc


def _keyword_pattern(keyword: str) -> re.Pattern:
    # Word boundaries only on sides that are word characters ("₹" has none)
    prefix = r"\b" if keyword[0].isalnum() else ""
    suffix = r"\b" if keyword[-1].isalnum() else ""
    return re.compile(prefix + re.escape(keyword) + suffix, re.IGNORECASE)


class IntelligenceExtractor:
    """
    Regex intelligence extraction for Indian scam messages.

    Every method is a pure function of its input text.
    """

    UPI = re.compile(r"(?<![\w.-])[a-zA-Z0-9._-]{2,}@[a-zA-Z][a-zA-Z0-9]+\b(?!\.[a-zA-Z])")

    PHONE = re.compile(r"(?<!\d)(?:\+?91[\s-]?|0)?[6-9]\d{4}[\s-]?\d{5}(?!\d)")

    BANK_ACCOUNT = re.compile(r"\b\d{9,18}\b")

    URL = re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+", re.IGNORECASE)

    BARE_SHORT_URL = re.compile(
        r"(?<![\w./])(?:" + "|".join(re.escape(d) for d in sorted(SHORTENER_DOMAINS)) + r")/[\w-]+",
        re.IGNORECASE
    )

    def __init__(self):
        self.keyword_patterns: Dict[str, List[tuple]] = {
            category: [(kw, _keyword_pattern(kw)) for kw in keywords]
            for category, keywords in SUSPICIOUS_KEYWORDS.items()
        }

    def extract(self, text: str) -> IntelligenceRecord:
        """Extract every intelligence category from one message"""
        if not text or not isinstance(text, str):
            return IntelligenceRecord()

        record = IntelligenceRecord(
            bank_accounts=frozenset(self.extract_bank_accounts(text)),
            upi_ids=frozenset(self.extract_upi_ids(text)),
            phishing_links=frozenset(self.extract_phishing_links(text)),
            phone_numbers=frozenset(self.extract_phone_numbers(text)),
            suspicious_keywords=frozenset(self.extract_suspicious_keywords(text)),
        )

        logger.debug(
            f"Extracted intel: upi={len(record.upi_ids)}, phones={len(record.phone_numbers)}, "
            f"links={len(record.phishing_links)}, accounts={len(record.bank_accounts)}"
        )
        return record

    def extract_upi_ids(self, text: str) -> List[str]:
        found = []
        for match in self.UPI.findall(text):
            upi = match.lower()
            domain = upi.split("@", 1)[1]
            if any(provider in domain for provider in EMAIL_PROVIDERS):
                continue
            if upi not in found:
                found.append(upi)
        return found

    def extract_phone_numbers(self, text: str) -> List[str]:
        found = []
        for match in self.PHONE.findall(text):
            phone = normalize_phone(match)
            if phone and phone not in found:
                found.append(phone)
        return found

    def extract_bank_accounts(self, text: str) -> List[str]:
        found = []
        for run in self.BANK_ACCOUNT.findall(text):
            # Order matters: phone filter first, then date filter
            if normalize_phone(run) is not None:
                continue
            if looks_like_date(run):
                continue
            if run not in found:
                found.append(run)
        return found

    def extract_urls(self, text: str) -> List[str]:
        """Every http(s) URL, trailing punctuation trimmed"""
        urls = []
        for url in self.URL.findall(text):
            url = url.rstrip(".,;:!?)'\"")
            if url and url not in urls:
                urls.append(url)
        return urls

    def extract_phishing_links(self, text: str) -> List[str]:
        """Only the suspicious subset of URLs"""
        links = [url for url in self.extract_urls(text) if is_suspicious_url(url)]

        # Shortened links without a scheme are always suspicious
        for short_url in self.BARE_SHORT_URL.findall(text):
            full_url = f"https://{short_url}"
            if full_url not in links:
                links.append(full_url)
        return links

    def extract_keyword_categories(self, text: str) -> Dict[str, Set[str]]:
        """Matched keywords grouped by category. Categories with no hits are omitted."""
        categories: Dict[str, Set[str]] = {}
        if not text:
            return categories
        for category, patterns in self.keyword_patterns.items():
            hits = {kw for kw, pattern in patterns if pattern.search(text)}
            if hits:
                categories[category] = hits
        return categories

    def extract_suspicious_keywords(self, text: str) -> List[str]:
        flat: List[str] = []
        for hits in self.extract_keyword_categories(text).values():
            for kw in sorted(hits):
                if kw not in flat:
                    flat.append(kw)
        return flat

    def get_scam_score(self, text: str) -> ScamScore:
        """
        Composite 0-100 score:
        UPI +30, phone +15, suspicious URL +40, keywords +5 each (max +30).
        """
        intel = self.extract(text)
        categories = self.extract_keyword_categories(text or "")

        score = 0
        breakdown: Dict[str, int] = {}

        if intel.upi_ids:
            score += UPI_WEIGHT
            breakdown["upiIds"] = UPI_WEIGHT
        if intel.phone_numbers:
            score += PHONE_WEIGHT
            breakdown["phoneNumbers"] = PHONE_WEIGHT
        if intel.phishing_links:
            score += SUSPICIOUS_URL_WEIGHT
            breakdown["phishingLinks"] = SUSPICIOUS_URL_WEIGHT
        if intel.suspicious_keywords:
            keyword_points = min(len(intel.suspicious_keywords) * KEYWORD_WEIGHT, KEYWORD_CAP)
            score += keyword_points
            breakdown["keywords"] = keyword_points

        return ScamScore(
            score=min(score, MAX_SCORE),
            breakdown=breakdown,
            intelligence=intel,
            categories=categories,
        )


# Singleton instance
intelligence_extractor = IntelligenceExtractor()
