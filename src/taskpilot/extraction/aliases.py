"""Map model-invented parameter names onto a template's canonical names."""

from __future__ import annotations

import logging
from typing import Any

from taskpilot.templates.models import ParameterSchema

logger = logging.getLogger(__name__)

PARAMETER_ALIASES: dict[str, tuple[str, ...]] = {
    "csvData": ("customer_list_csv", "csv_data", "csv", "customerListCsv", "list_data"),
    "customerId": ("customer_id", "customid", "cid"),
    "companyId": ("company_id", "companyid"),
    "contactId": ("contact_id", "contactid"),
    "dealId": ("deal_id", "dealid"),
    "leadId": ("lead_id", "leadid"),
    "invoiceId": ("invoice_id", "invoiceid"),
    "dateRange": ("date_range", "range", "period"),
}


def normalize_parameter_names(
    parameters: dict[str, Any],
    schema: ParameterSchema | None,
) -> dict[str, Any]:
    """Rename the first matching alias to each absent schema property.

    A key already present under its canonical name is never overwritten.
    """

    if schema is None or not schema.properties:
        return parameters

    normalized = dict(parameters)
    for canonical in schema.properties:
        if canonical in normalized:
            continue
        for alias in PARAMETER_ALIASES.get(canonical, ()):
            if alias in normalized and alias not in schema.properties:
                normalized[canonical] = normalized.pop(alias)
                logger.info("Normalized parameter name %s -> %s", alias, canonical)
                break
    return normalized
