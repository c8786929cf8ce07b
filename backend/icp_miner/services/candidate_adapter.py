# backend/icp_miner/services/candidate_adapter.py
"""
Single adapter from the finder's search envelope to Candidate values.

The finder nests results under different keys depending on the response
shape (``data.search_results``, ``results``, ``persons``) and returns either
nested ``{person, organization, ...}`` entries or already-flat ones. All of
that shape-sniffing lives here; business logic only ever sees Candidate.
"""

import logging
from typing import Any, Dict, List, Optional

from icp_miner.schemas.mining import Candidate, SearchPage

logger = logging.getLogger(__name__)

RESULT_KEYS = ("search_results", "results", "persons")


def _unwrap(payload: Any) -> Any:
    """Strip nested ``data`` envelopes."""
    while isinstance(payload, dict) and isinstance(payload.get("data"), (dict, list)):
        payload = payload["data"]
    return payload


def _extract_results(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        return [r for r in payload if isinstance(r, dict)]
    if not isinstance(payload, dict):
        return []
    for key in RESULT_KEYS:
        if isinstance(payload.get(key), list):
            return [r for r in payload[key] if isinstance(r, dict)]
    return []


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def _as_id(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _clean_list(values: Any, key: str) -> List[str]:
    """Accept ["a@b.com"] or [{"email": "a@b.com"}] shapes."""
    if not values:
        return []
    if isinstance(values, str):
        values = [values]
    cleaned = []
    for value in values:
        if isinstance(value, dict):
            value = value.get(key)
        if isinstance(value, str) and value.strip():
            cleaned.append(value.strip())
    return cleaned


def _location_name(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("name")
    return value or None


def _current_role_organization(person: Dict[str, Any]) -> Dict[str, Any]:
    """Organization of the current role (or first role) when the result lists roles."""
    roles = person.get("roles")
    if not isinstance(roles, list) or not roles:
        return {}
    current = next((r for r in roles if isinstance(r, dict) and r.get("is_current") is True), None)
    current = current or roles[0]
    if not isinstance(current, dict):
        return {}
    return current.get("organization") or {}


def to_candidate(result: Dict[str, Any]) -> Candidate:
    """Flatten one search result into a Candidate."""
    if isinstance(result.get("person"), dict):
        person = result["person"]
        organization = result.get("organization") or {}
        role_id = result.get("role_id") or result.get("id")
    else:
        person = result
        organization = result.get("organization") or {}
        role_id = result.get("external_role_id") or result.get("role_id")

    role_org = _current_role_organization(person)
    linkedin_info = person.get("linkedin_info") or result.get("linkedin_info") or {}

    emails = (
        _clean_list(person.get("emails"), "email")
        + _clean_list(person.get("work_emails"), "email")
        + _clean_list(person.get("email"), "email")
        + _clean_list(result.get("emails"), "email")
    )
    phones = (
        _clean_list(person.get("phones"), "phone_number")
        + _clean_list(person.get("phone_numbers"), "phone_number")
        + _clean_list(result.get("phones"), "phone_number")
    )

    return Candidate(
        external_person_id=_as_id(
            result.get("external_person_id") or person.get("id") or person.get("person_id")
        ),
        external_role_id=_as_id(role_id),
        external_organization_id=_as_id(organization.get("id") or result.get("external_organization_id")),
        full_name=person.get("full_name") or person.get("name"),
        company_name=(
            organization.get("name")
            or result.get("company_name")
            or result.get("organization_name")
            or role_org.get("name")
        ),
        organization_domain=organization.get("domain") or role_org.get("domain") or result.get("domain"),
        organization_website=organization.get("website") or role_org.get("website"),
        role_title=result.get("role_title") or person.get("role_title") or person.get("title"),
        location=_location_name(person.get("location") or result.get("location")),
        linkedin_url=(
            person.get("linkedin_url")
            or linkedin_info.get("public_profile_url")
            or result.get("linkedin_url")
        ),
        start_date=result.get("start_date"),
        end_date=result.get("end_date"),
        is_current=result.get("is_current"),
        industry=organization.get("industry"),
        company_size=_as_id(organization.get("employees_range") or organization.get("size")),
        emails=list(dict.fromkeys(emails)),
        phones=list(dict.fromkeys(phones)),
        raw=result,
    )


def normalize_search_response(payload: Any, page: int, page_size: int) -> SearchPage:
    """
    Normalize a finder ``person_role_search`` response into a SearchPage.

    ``total`` is only trusted when numeric; ``has_more`` is taken from the
    response when present and otherwise derived from the total or from page
    fullness.
    """
    body = _unwrap(payload)
    results = _extract_results(body)
    meta = body.get("meta", {}) if isinstance(body, dict) else {}
    if not isinstance(meta, dict):
        meta = {}

    total = _as_int(meta.get("total"))
    if total is None and isinstance(body, dict):
        total = _as_int(body.get("total"))

    effective_page_size = _as_int(meta.get("page_size")) or _as_int(meta.get("pageSize")) or page_size

    has_more = None
    for source in (meta, body if isinstance(body, dict) else {}):
        for key in ("has_more", "hasMore"):
            if isinstance(source.get(key), bool):
                has_more = source[key]
                break
        if has_more is not None:
            break

    if has_more is None:
        if total is not None:
            has_more = (page + 1) * effective_page_size < total
        else:
            has_more = len(results) >= effective_page_size > 0

    candidates = []
    for result in results:
        try:
            candidates.append(to_candidate(result))
        except (AttributeError, TypeError) as e:
            logger.warning(f"Skipping malformed search result on page {page}: {e}")

    return SearchPage(
        candidates=candidates,
        total=total,
        has_more=has_more,
        page=page,
        page_size=effective_page_size,
    )
