"""Serialized key variants for backward-compatible description lookup."""
from typing import Iterable, List, Optional, Set

from descriptions.models import CanonicalKey, HolidayIdentity
from identity.normalizer import IdentityNormalizer

# Delimiters used by the tools that populated the stores over time.
DELIMITERS = ('|', '_', '-')


class KeyVariantGenerator:
    """
    Generates every string key a description may have been stored under.

    Records were written with either a country name or a country code and
    with one of three delimiters, so lookups probe the full cross product:

        {raw identifier, ISO2 code, canonical name, lower-case code}
            x {'|', '_', '-'}

    for each requested locale. No fuzzy matching happens here; the holiday
    name is used exactly as given.
    """

    def __init__(self, normalizer: Optional[IdentityNormalizer] = None):
        self.normalizer = normalizer or IdentityNormalizer()

    def country_forms(self, country_identifier: str) -> List[str]:
        """
        List the usable forms of a country identifier, raw form first.

        Args:
            country_identifier: Country code or name as supplied

        Returns:
            Ordered, de-duplicated list of country forms
        """
        forms = [country_identifier]

        country = self.normalizer.try_normalize(country_identifier)
        if country:
            forms.extend([country.code, country.name, country.code.lower()])

        return list(dict.fromkeys(forms))

    def ordered_variants(
        self,
        identity: HolidayIdentity,
        locales: Optional[Iterable[str]] = None
    ) -> List[str]:
        """
        Build variant keys in a deterministic probe order.

        Args:
            identity: Identity to expand
            locales: Locales to generate keys for (default: identity locale)

        Returns:
            De-duplicated list of serialized keys
        """
        if locales is None:
            locales = [identity.locale]

        keys = []
        for locale in locales:
            for country in self.country_forms(identity.country_identifier):
                for delimiter in DELIMITERS:
                    keys.append(
                        delimiter.join([identity.holiday_name, country, locale])
                    )

        return list(dict.fromkeys(keys))

    def variants_for(
        self,
        identity: HolidayIdentity,
        locales: Optional[Iterable[str]] = None
    ) -> Set[str]:
        return set(self.ordered_variants(identity, locales))

    def canonical_key(self, identity: HolidayIdentity) -> CanonicalKey:
        return self.normalizer.canonical_key(identity)

    def storage_key(self, identity: HolidayIdentity) -> str:
        """Key every new write is stored under."""
        return self.canonical_key(identity).serialize()
