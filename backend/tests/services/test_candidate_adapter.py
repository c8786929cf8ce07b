# tests/services/test_candidate_adapter.py
"""
Tests for the finder search response adapter

Coverage:
- Result envelopes (search_results / results / persons, nested data)
- total / has_more from meta or body, and derived has_more
- Nested and flat result flattening

Run with: pytest tests/services/test_candidate_adapter.py -v
"""

import pytest

from icp_miner.services.candidate_adapter import normalize_search_response, to_candidate


NESTED_RESULT = {
    "id": 901,
    "person": {
        "id": 11,
        "full_name": "Ada Lovelace",
        "location": {"name": "London"},
        "linkedin_info": {"public_profile_url": "https://linkedin.com/in/ada"},
        "emails": [{"email": "ada@analytical.io"}],
    },
    "organization": {"id": 77, "name": "Analytical Engines", "domain": "analytical.io", "industry": "Computing"},
    "role_title": "CTO",
    "start_date": "1843-01-01",
    "is_current": True,
}


# ============================================================================
# ENVELOPES
# ============================================================================

@pytest.mark.unit
class TestEnvelopes:

    def test_nested_data_search_results(self):
        payload = {"data": {"search_results": [NESTED_RESULT], "meta": {"total": 25, "has_more": True}}}

        page = normalize_search_response(payload, page=0, page_size=10)

        assert len(page.candidates) == 1
        assert page.total == 25
        assert page.has_more is True

    def test_results_key_with_camel_case_has_more(self):
        payload = {"results": [NESTED_RESULT], "hasMore": False, "total": 1}

        page = normalize_search_response(payload, page=0, page_size=10)

        assert len(page.candidates) == 1
        assert page.has_more is False
        assert page.total == 1

    def test_persons_key(self):
        payload = {"persons": [{"full_name": "Flat Person", "company_name": "Flat Co"}]}

        page = normalize_search_response(payload, page=0, page_size=10)

        assert page.candidates[0].full_name == "Flat Person"
        assert page.candidates[0].company_name == "Flat Co"

    def test_unknown_shape_yields_empty_page(self):
        page = normalize_search_response({"unexpected": True}, page=3, page_size=10)

        assert page.candidates == []
        assert page.has_more is False
        assert page.total is None

    def test_has_more_derived_from_total(self):
        results = [NESTED_RESULT] * 10
        assert normalize_search_response({"results": results, "total": 25}, page=1, page_size=10).has_more is True
        assert normalize_search_response({"results": results[:5], "total": 25}, page=2, page_size=10).has_more is False

    def test_has_more_derived_from_page_fullness(self):
        full = normalize_search_response({"results": [NESTED_RESULT] * 10}, page=0, page_size=10)
        partial = normalize_search_response({"results": [NESTED_RESULT] * 3}, page=0, page_size=10)

        assert full.has_more is True
        assert partial.has_more is False

    def test_non_numeric_total_ignored(self):
        page = normalize_search_response({"results": [], "total": "lots"}, page=0, page_size=10)
        assert page.total is None


# ============================================================================
# FLATTENING
# ============================================================================

@pytest.mark.unit
class TestToCandidate:

    def test_nested_result(self):
        c = to_candidate(NESTED_RESULT)

        assert c.external_person_id == "11"
        assert c.external_role_id == "901"
        assert c.external_organization_id == "77"
        assert c.full_name == "Ada Lovelace"
        assert c.company_name == "Analytical Engines"
        assert c.organization_domain == "analytical.io"
        assert c.role_title == "CTO"
        assert c.location == "London"
        assert c.linkedin_url == "https://linkedin.com/in/ada"
        assert c.emails == ["ada@analytical.io"]
        assert c.is_current is True
        assert c.raw is NESTED_RESULT

    def test_domain_from_current_role_organization(self):
        result = {
            "person": {
                "id": 5,
                "full_name": "Grace Hopper",
                "roles": [
                    {"is_current": False, "organization": {"name": "Old Co", "domain": "old.com"}},
                    {"is_current": True, "organization": {"name": "Navy", "website": "https://navy.mil"}},
                ],
            },
        }

        c = to_candidate(result)

        assert c.company_name == "Navy"
        assert c.organization_website == "https://navy.mil"
        assert c.organization_domain is None

    def test_flat_result_ids_and_contacts(self):
        c = to_candidate({
            "external_person_id": 42,
            "external_role_id": 7,
            "full_name": "Flat Person",
            "organization": {"name": "Flat Co"},
            "phones": [{"phone_number": "+1 555 0100"}],
            "emails": ["flat@flat.co", "flat@flat.co"],
        })

        assert c.external_person_id == "42"
        assert c.external_role_id == "7"
        assert c.phones == ["+1 555 0100"]
        assert c.emails == ["flat@flat.co"]

    def test_identifiable(self):
        assert to_candidate({"full_name": "No Company"}).is_identifiable is False
        assert to_candidate({"full_name": "A", "company_name": "B"}).is_identifiable is True
