"""
Conservative salary range validation.

Showing no salary is better than showing a false positive such as
"89 - 7 USD" pulled from unrelated numbers on a page.
"""
import re
from typing import Dict, Optional, Union

MIN_ANNUAL_SALARY = 10_000
MAX_ANNUAL_SALARY = 2_000_000
CURRENCY_RE = re.compile(r'^[A-Z]{3}$')

HOURLY_RE = re.compile(r'\b(?:per\s*hour|hourly)\b|/\s*hr?\b')
MONTHLY_RE = re.compile(r'\b(?:per\s*month|monthly)\b|/\s*mo(?:nth)?\b')
YEARLY_RE = re.compile(r'\b(?:per\s*year|annual|annually|yearly)\b|/\s*y(?:ea)?r\b')

Number = Union[int, float, str, None]


class SalaryRangeValidator:
    """Normalizes a (min, max, currency) triple and rejects implausible ranges."""

    @classmethod
    def normalize(cls, min: Number = None, max: Number = None, currency: Optional[str] = None,
                  context_text: Optional[str] = None) -> Dict:
        """
        Returns:
            {'valid': bool, 'min': float or None, 'max': float or None,
             'currency': str or None, 'reason': str or None}
        """
        min_n = cls.coerce_number(min)
        max_n = cls.coerce_number(max)
        cur = (currency or '').strip().upper() or None

        if min_n is None and max_n is None:
            return cls._invalid('missing_salary')
        if not cur or not CURRENCY_RE.match(cur):
            return cls._invalid('missing_currency')
        if min_n is not None and max_n is not None and max_n < min_n:
            return cls._invalid('inverted_range')

        unit = cls.infer_unit(context_text)
        if unit and unit != 'year':
            return cls._invalid('non_annual_unit')

        if min_n is not None and not cls._plausible(min_n):
            return cls._invalid('min_out_of_bounds')
        if max_n is not None and not cls._plausible(max_n):
            return cls._invalid('max_out_of_bounds')

        return {'valid': True, 'min': min_n, 'max': max_n, 'currency': cur, 'reason': None}

    @staticmethod
    def _invalid(reason: str) -> Dict:
        return {'valid': False, 'min': None, 'max': None, 'currency': None, 'reason': reason}

    @staticmethod
    def _plausible(amount: float) -> bool:
        return MIN_ANNUAL_SALARY <= amount <= MAX_ANNUAL_SALARY

    @staticmethod
    def infer_unit(text: Optional[str]) -> Optional[str]:
        lowered = (text or '').lower()
        if HOURLY_RE.search(lowered):
            return 'hour'
        if MONTHLY_RE.search(lowered):
            return 'month'
        if YEARLY_RE.search(lowered):
            return 'year'
        return None

    @classmethod
    def coerce_number(cls, value: Number) -> Optional[float]:
        """Parse 120000, "120,000", "$120k" or "89,7" into a float."""
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return float(value)

        cleaned = re.sub(r'[^\d.,kK]', '', str(value).strip())
        if not cleaned:
            return None

        multiplier = 1.0
        if cleaned[-1] in 'kK':
            multiplier = 1000.0
            cleaned = cleaned[:-1]

        number = cls._parse_decimalish(cleaned)
        return number * multiplier if number is not None else None

    @staticmethod
    def _parse_decimalish(text: str) -> Optional[float]:
        if not text:
            return None
        # "89,7" is a decimal comma; "120,000" is a thousands separator
        if ',' in text and '.' not in text and re.match(r'^\d+,\d{1,2}$', text):
            text = text.replace(',', '.')
        else:
            text = text.replace(',', '')
        try:
            return float(text)
        except ValueError:
            return None
