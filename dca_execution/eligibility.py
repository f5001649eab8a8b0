"""
DCA Execution - Exchange Catalog and Geographic Eligibility.

============================================================
PURPOSE
============================================================
Static exchange metadata and the country -> exchange lookup the
caller consults before offering an exchange to a user.

The facade does no geo-gating itself; this is a pure lookup.

============================================================
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List

from .types import ExchangeId


# ============================================================
# EXCHANGE CATALOG
# ============================================================

@dataclass(frozen=True)
class ExchangeInfo:
    """Display metadata for an exchange."""

    exchange_id: ExchangeId
    name: str
    description: str
    trading_fee_percent: Decimal
    """Default taker fee, used as the fee hint when the caller has none."""

    website: str
    api_keys_url: str
    uses_oauth: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.exchange_id.value,
            "name": self.name,
            "description": self.description,
            "trading_fee_percent": str(self.trading_fee_percent),
            "website": self.website,
            "api_keys_url": self.api_keys_url,
            "uses_oauth": self.uses_oauth,
        }


EXCHANGES: Dict[ExchangeId, ExchangeInfo] = {
    ExchangeId.BINANCE: ExchangeInfo(
        exchange_id=ExchangeId.BINANCE,
        name="Binance",
        description="Largest crypto exchange by volume",
        trading_fee_percent=Decimal("0.1"),
        website="https://www.binance.com",
        api_keys_url="https://www.binance.com/en/my/settings/api-management",
    ),
    ExchangeId.KRAKEN: ExchangeInfo(
        exchange_id=ExchangeId.KRAKEN,
        name="Kraken",
        description="US-based exchange with strong security",
        trading_fee_percent=Decimal("0.26"),
        website="https://www.kraken.com",
        api_keys_url="https://www.kraken.com/u/security/api",
    ),
    ExchangeId.COINBASE_ADVANCED: ExchangeInfo(
        exchange_id=ExchangeId.COINBASE_ADVANCED,
        name="Coinbase Advanced",
        description="Coinbase Advanced Trade with CDP API keys",
        trading_fee_percent=Decimal("0.6"),
        website="https://www.coinbase.com/advanced-trade",
        api_keys_url="https://portal.cdp.coinbase.com/access/api",
    ),
    ExchangeId.COINBASE: ExchangeInfo(
        exchange_id=ExchangeId.COINBASE,
        name="Coinbase",
        description="Coinbase retail account, connected with OAuth",
        trading_fee_percent=Decimal("1.49"),
        website="https://www.coinbase.com",
        api_keys_url="https://www.coinbase.com/settings/api",
        uses_oauth=True,
    ),
}


def get_exchange_info(exchange_id: ExchangeId) -> ExchangeInfo:
    return EXCHANGES[exchange_id]


# ============================================================
# COUNTRY SETS
# ============================================================

BINANCE_COUNTRIES: FrozenSet[str] = frozenset("""
AL DZ AO AI AG AR AM AU AT AZ BS BH BB BY BE BZ BJ BM BT BO BA BW BR BN BG
BF CV KH CM CA KY TD CL CO CD CG CR CI HR CY CZ DK DM DO EC SV EE SZ FJ FI
FR GA GM GE DE GH GR GD GT GW GY HN HK HU IS ID IQ IE IL IT JM JP JO KZ KE
KR XK KW KG LA LV LB LR LY LT LU MO MG MW MV ML MT MR MU MX FM MD MN ME MS
MZ MM NA NR NP NZ NI NE NG NO OM PK PW PA PG PY PE PH PL PT QA MK RO RU RW
KN LC VC ST SA SN RS SC SL SG SK SI SB ZA ES LK SR SE CH TW TJ TZ TH TO TT
TN TR TM TC UG UA AE GB UY UZ VU VE VN VG YE ZM ZW
""".split())

KRAKEN_COUNTRIES: FrozenSet[str] = frozenset("""
AT BE BG HR CY CZ DK EE FI FR DE GR HU IS IE IT LV LI LT LU MT NL NO PL PT
RO SK SI ES SE GB CA US AR AU BM SG
""".split())

KRAKEN_PROHIBITED: FrozenSet[str] = frozenset("""
AF BY CU CD IR IQ JP LY KP RU SD SS SY
""".split())

RESTRICTED_COUNTRIES = KRAKEN_PROHIBITED
"""Sanctioned jurisdictions where Coinbase is not offered."""


def _normalize(country_code: str) -> str:
    return (country_code or "").strip().upper()


def is_binance_available(country_code: str) -> bool:
    return _normalize(country_code) in BINANCE_COUNTRIES


def is_kraken_available(country_code: str) -> bool:
    code = _normalize(country_code)
    return code in KRAKEN_COUNTRIES and code not in KRAKEN_PROHIBITED


def is_coinbase_available(country_code: str) -> bool:
    code = _normalize(country_code)
    return len(code) == 2 and code not in RESTRICTED_COUNTRIES


def get_available_exchanges(country_code: str) -> List[ExchangeId]:
    """
    Exchanges a user in the given country may connect.

    Args:
        country_code: ISO 3166-1 alpha-2 code

    Returns:
        Exchange ids, in display order
    """
    exchanges: List[ExchangeId] = []

    if is_binance_available(country_code):
        exchanges.append(ExchangeId.BINANCE)

    if is_kraken_available(country_code):
        exchanges.append(ExchangeId.KRAKEN)

    if is_coinbase_available(country_code):
        exchanges.append(ExchangeId.COINBASE_ADVANCED)
        exchanges.append(ExchangeId.COINBASE)

    return exchanges


def has_available_exchanges(country_code: str) -> bool:
    return len(get_available_exchanges(country_code)) > 0
