"""Contract call parameter population from matched location data."""

from typing import Any

from geotrigger.models.rule import ExecutionRule, MappedFrom


def populate_parameters(
    rule: ExecutionRule,
    public_key: str,
    latitude: float | None = None,
    longitude: float | None = None,
) -> dict[str, Any]:
    """Fill the rule's parameter template from its explicit mappings.

    Parameters without a mapping keep their template value. A mapping whose
    source is unavailable (no coordinates on the event) leaves the template
    value untouched.

    Args:
        rule: Rule carrying the template and mappings
        public_key: Wallet that matched
        latitude: Matched latitude, if known
        longitude: Matched longitude, if known

    Returns:
        New parameter dict for the contract call
    """
    sources: dict[MappedFrom, Any] = {
        MappedFrom.LATITUDE: latitude,
        MappedFrom.LONGITUDE: longitude,
        MappedFrom.USER_PUBLIC_KEY: public_key,
    }

    params = dict(rule.function_parameters)
    for mapping in rule.parameter_mappings:
        value = sources[mapping.mapped_from]
        if value is not None:
            params[mapping.name] = value
    return params
