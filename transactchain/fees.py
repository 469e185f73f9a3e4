"""
Cross-Border Fee Schedule

Percentage rates per country. A transfer between two different countries is
charged the average of the two countries' rates; domestic transfers are free.
"""

from decimal import Decimal
from typing import Dict, Mapping, Optional

from .currency import Money


DEFAULT_FEE_RATE = Decimal('2.0')

# Mock cross-border fee mapping (%), keyed by country name as entered at registration
COUNTRY_FEE_RATES: Dict[str, Decimal] = {
    "USA": Decimal('1.5'),
    "UK": Decimal('1.8'),
    "India": Decimal('2.0'),
    "Germany": Decimal('1.6'),
    "Japan": Decimal('1.4'),
    "Australia": Decimal('1.9'),
    "Canada": Decimal('1.7'),
    "UAE": Decimal('2.2'),
    "Singapore": Decimal('1.3'),
    "France": Decimal('1.5'),
}


class FeeSchedule:
    """Country -> percentage rate lookup with a default for unknown countries"""

    def __init__(
        self,
        rates: Optional[Mapping[str, Decimal]] = None,
        default_rate: Decimal = DEFAULT_FEE_RATE
    ):
        self._rates: Dict[str, Decimal] = dict(COUNTRY_FEE_RATES)
        if rates:
            self._rates.update({k: Decimal(str(v)) for k, v in rates.items()})
        self.default_rate = Decimal(str(default_rate))

    def rate(self, country: Optional[str]) -> Decimal:
        """Rate in percent for a country; the default rate if unknown"""
        return self._rates.get(country, self.default_rate)

    @staticmethod
    def is_cross_border(sender_country: Optional[str], receiver_country: Optional[str]) -> bool:
        return sender_country != receiver_country

    def fee_for(self, sender_country: str, receiver_country: str, amount: Money) -> Money:
        """
        Fee charged on top of amount.

        Zero for domestic transfers, otherwise the average of both country
        rates applied to amount, rounded half-up to the currency precision.
        """
        if not self.is_cross_border(sender_country, receiver_country):
            return Money.zero(amount.currency)

        percent = (self.rate(sender_country) + self.rate(receiver_country)) / 2
        return Money(percent / Decimal('100') * amount.amount, amount.currency)

    def rates(self) -> Dict[str, Decimal]:
        return dict(self._rates)
