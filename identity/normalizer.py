"""Country identifier normalization."""
import logging
from typing import Dict, Optional

from descriptions.errors import UnknownCountryError
from descriptions.models import CanonicalKey, HolidayIdentity, NormalizedCountry
from identity.countries import COUNTRY_ALIASES, COUNTRY_NAMES

logger = logging.getLogger(__name__)


class IdentityNormalizer:
    """Maps country codes and names onto ISO2 codes and canonical names."""

    def __init__(
        self,
        country_names: Optional[Dict[str, str]] = None,
        aliases: Optional[Dict[str, str]] = None
    ):
        """
        Build the lookup tables.

        Args:
            country_names: Mapping of ISO2 code to canonical English name
            aliases: Extra informal names mapped to ISO2 codes
        """
        if country_names is None:
            country_names = COUNTRY_NAMES
        if aliases is None:
            aliases = COUNTRY_ALIASES

        self._names_by_code = {
            code.upper(): name for code, name in country_names.items()
        }
        self._codes_by_name = {
            self._fold(name): code for code, name in self._names_by_code.items()
        }
        for alias, code in aliases.items():
            self._codes_by_name.setdefault(self._fold(alias), code.upper())

    @staticmethod
    def _fold(value: str) -> str:
        """Case-fold a name and treat hyphens as spaces."""
        return ' '.join(value.replace('-', ' ').split()).casefold()

    def normalize(self, country_identifier: str) -> NormalizedCountry:
        """
        Resolve a country code or name.

        Codes are matched before names, both case-insensitively.

        Args:
            country_identifier: ISO2 code or free-form country name

        Returns:
            NormalizedCountry with upper-case code and canonical name

        Raises:
            UnknownCountryError: If the identifier matches nothing
        """
        candidate = (country_identifier or '').strip()

        code = candidate.upper()
        if len(code) == 2 and code in self._names_by_code:
            return NormalizedCountry(code=code, name=self._names_by_code[code])

        code = self._codes_by_name.get(self._fold(candidate))
        if code:
            return NormalizedCountry(code=code, name=self._names_by_code[code])

        raise UnknownCountryError(country_identifier)

    def try_normalize(self, country_identifier: str) -> Optional[NormalizedCountry]:
        try:
            return self.normalize(country_identifier)
        except UnknownCountryError:
            return None

    def same_country(self, first: str, second: str) -> bool:
        """Check whether two identifiers denote the same country."""
        first_country = self.try_normalize(first)
        second_country = self.try_normalize(second)
        if first_country and second_country:
            return first_country.code == second_country.code
        return (first or '').strip().casefold() == (second or '').strip().casefold()

    def canonical_key(self, identity: HolidayIdentity) -> CanonicalKey:
        """
        Build the canonical key for an identity.

        Unresolvable country identifiers are kept verbatim (upper-cased) so
        that legacy records keyed by them stay addressable.
        """
        country = self.try_normalize(identity.country_identifier)
        if country:
            country_code = country.code
        else:
            logger.debug(
                f"Keeping raw country identifier in canonical key: "
                f"{identity.country_identifier!r}"
            )
            country_code = identity.country_identifier.strip().upper()

        return CanonicalKey(
            holiday_name_lower=identity.holiday_name.strip().lower(),
            country_code=country_code,
            locale=identity.locale
        )
