"""
Tests for Customer Segments API

Tests segment CRUD operations, preview, membership materialization,
snapshot refresh and rule authoring endpoints.
"""

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.main import app
from app.models.customer import Customer
from app.models.segment import Segment
from app.models.user import User
from app.services.ai_gateway import get_ai_gateway


HIGH_VALUE_RULE = {
    "type": "AND",
    "conditions": [
        {"field": "totalSpend", "operator": "gt", "value": 500},
        {"field": "visitCount", "operator": "gte", "value": 3},
    ],
}


# ============================================
# Fixtures
# ============================================


@pytest_asyncio.fixture
async def sample_customers(test_db: AsyncSession) -> list[Customer]:
    """Three customers: the first and third are high-value regulars."""
    now = datetime.now(timezone.utc)
    customers = [
        Customer(
            name="Alice Moreno",
            email="alice@example.com",
            total_spend=Decimal("1200.00"),
            visit_count=3,
            last_visit=now - timedelta(days=10),
        ),
        Customer(
            name="Bob Tran",
            email="bob@example.com",
            total_spend=Decimal("50.00"),
            visit_count=1,
            last_visit=now - timedelta(days=200),
        ),
        Customer(
            name="Carol Singh",
            email="carol@example.com",
            total_spend=Decimal("800.00"),
            visit_count=5,
            last_visit=now - timedelta(days=40),
        ),
    ]
    test_db.add_all(customers)
    await test_db.commit()
    for customer in customers:
        await test_db.refresh(customer)
    return customers


@pytest_asyncio.fixture
async def sample_segment(authenticated_client: AsyncClient, sample_customers) -> dict:
    """Create a high-value segment through the API."""
    response = await authenticated_client.post(
        "/api/v2/segments/",
        json={
            "name": "High Value",
            "description": "Spent over 500 with at least three visits",
            "rules": HIGH_VALUE_RULE,
        },
    )
    assert response.status_code == 201
    return response.json()


async def segment_count(db: AsyncSession) -> int:
    result = await db.execute(select(func.count()).select_from(Segment))
    return result.scalar()


# ============================================
# Preview Tests
# ============================================


class TestSegmentPreview:
    """Tests for previewing rules without saving."""

    @pytest.mark.asyncio
    async def test_preview_counts_matches(
        self, authenticated_client: AsyncClient, sample_customers, test_db: AsyncSession
    ):
        """Test preview count and sample for the canonical rule."""
        response = await authenticated_client.post(
            "/api/v2/segments/preview", json={"rules": HIGH_VALUE_RULE}
        )
        assert response.status_code == 200

        data = response.json()
        assert data["count"] == 2
        assert [c["id"] for c in data["sample"]] == [sample_customers[0].id, sample_customers[2].id]
        assert data["sample"][0]["email"] == "alice@example.com"
        assert data["sample"][0]["total_spend"] == 1200.0

    @pytest.mark.asyncio
    async def test_preview_does_not_persist(
        self, authenticated_client: AsyncClient, sample_customers, test_db: AsyncSession
    ):
        """Test that preview never writes a segment."""
        await authenticated_client.post("/api/v2/segments/preview", json={"rules": HIGH_VALUE_RULE})
        assert await segment_count(test_db) == 0

    @pytest.mark.asyncio
    async def test_preview_sample_is_capped(
        self, authenticated_client: AsyncClient, test_db: AsyncSession
    ):
        """Test that at most five sample customers are returned."""
        test_db.add_all(
            Customer(name=f"Customer {i}", email=f"c{i}@example.com", total_spend=Decimal("10"), visit_count=i)
            for i in range(8)
        )
        await test_db.commit()

        response = await authenticated_client.post(
            "/api/v2/segments/preview",
            json={"rules": {"field": "totalSpend", "operator": "gte", "value": 0}},
        )
        data = response.json()
        assert data["count"] == 8
        assert len(data["sample"]) == 5
        ids = [c["id"] for c in data["sample"]]
        assert ids == sorted(ids)

    @pytest.mark.asyncio
    async def test_preview_with_no_customers(self, authenticated_client: AsyncClient):
        """Test preview against an empty customer table."""
        response = await authenticated_client.post(
            "/api/v2/segments/preview", json={"rules": HIGH_VALUE_RULE}
        )
        assert response.status_code == 200
        assert response.json()["count"] == 0
        assert response.json()["sample"] == []

    @pytest.mark.asyncio
    async def test_preview_unknown_field(self, authenticated_client: AsyncClient):
        """Test that unknown fields return a RULE_001 problem document."""
        response = await authenticated_client.post(
            "/api/v2/segments/preview",
            json={"rules": {"field": "loyaltyTier", "operator": "equals", "value": "gold"}},
        )
        assert response.status_code == 400
        assert response.headers["content-type"].startswith("application/problem+json")

        data = response.json()
        assert data["code"] == "RULE_001"
        assert data["instance"] == "/api/v2/segments/preview"
        assert "trace_id" in data

    @pytest.mark.asyncio
    async def test_preview_operator_for_wrong_type(self, authenticated_client: AsyncClient):
        """Test that a string operator on a number field returns RULE_004."""
        response = await authenticated_client.post(
            "/api/v2/segments/preview",
            json={"rules": {"field": "totalSpend", "operator": "contains", "value": "5"}},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "RULE_004"

    @pytest.mark.asyncio
    async def test_preview_invalid_value(self, authenticated_client: AsyncClient):
        """Test that an unparseable value returns RULE_003."""
        response = await authenticated_client.post(
            "/api/v2/segments/preview",
            json={"rules": {"field": "lastVisit", "operator": "daysAgo", "value": -3}},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "RULE_003"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "rules",
        [
            {"field": "lastVisit", "operator": "daysAgo", "value": 1000000},
            {"field": "totalSpend", "operator": "gt", "value": 10**400},
        ],
    )
    async def test_preview_out_of_range_value(self, authenticated_client: AsyncClient, rules):
        """Test that values too large to evaluate return RULE_003, not a server error."""
        response = await authenticated_client.post("/api/v2/segments/preview", json={"rules": rules})
        assert response.status_code == 400
        assert response.json()["code"] == "RULE_003"

    @pytest.mark.asyncio
    async def test_preview_empty_group(self, authenticated_client: AsyncClient):
        """Test that an empty group is a validation error."""
        response = await authenticated_client.post(
            "/api/v2/segments/preview",
            json={"rules": {"type": "AND", "conditions": []}},
        )
        assert response.status_code == 422
        assert response.json()["code"] == "VAL_001"

    @pytest.mark.asyncio
    async def test_preview_requires_auth(self, client: AsyncClient):
        """Test that endpoints require a bearer token."""
        response = await client.post("/api/v2/segments/preview", json={"rules": HIGH_VALUE_RULE})
        assert response.status_code == 401
        assert response.json()["code"] == "AUTH_001"


# ============================================
# Segment CRUD Tests
# ============================================


class TestSegmentCRUD:
    """Tests for segment CRUD operations."""

    @pytest.mark.asyncio
    async def test_create_segment_materializes_membership(self, sample_segment, sample_customers):
        """Test that creation stores the matched customer ids."""
        assert sample_segment["customer_count"] == 2
        assert sample_segment["matched_customer_ids"] == [sample_customers[0].id, sample_customers[2].id]
        assert sample_segment["rules"] == HIGH_VALUE_RULE
        assert sample_segment["last_evaluated_at"] is not None

    @pytest.mark.asyncio
    async def test_create_segment_records_owner(
        self, sample_segment, test_user: User
    ):
        """Test that the creating user owns the segment."""
        assert sample_segment["created_by_user_id"] == test_user.id

    @pytest.mark.asyncio
    async def test_create_segment_with_zero_matches(
        self, authenticated_client: AsyncClient, sample_customers
    ):
        """Test that a segment matching nobody is still created."""
        response = await authenticated_client.post(
            "/api/v2/segments/",
            json={
                "name": "Whales",
                "description": "Spent over a million",
                "rules": {"field": "totalSpend", "operator": "gt", "value": 1000000},
            },
        )
        assert response.status_code == 201
        assert response.json()["customer_count"] == 0
        assert response.json()["matched_customer_ids"] == []

    @pytest.mark.asyncio
    async def test_create_segment_requires_description(self, authenticated_client: AsyncClient):
        """Test that description is required."""
        response = await authenticated_client.post(
            "/api/v2/segments/",
            json={"name": "No description", "rules": HIGH_VALUE_RULE},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_create_segment_rejects_blank_name(
        self, authenticated_client: AsyncClient, test_db: AsyncSession
    ):
        """Test that whitespace-only names are rejected."""
        response = await authenticated_client.post(
            "/api/v2/segments/",
            json={"name": "   ", "description": "Blank name", "rules": HIGH_VALUE_RULE},
        )
        assert response.status_code == 422
        assert await segment_count(test_db) == 0

    @pytest.mark.asyncio
    async def test_create_segment_invalid_rule_not_saved(
        self, authenticated_client: AsyncClient, test_db: AsyncSession
    ):
        """Test that a rule error prevents the segment from being saved."""
        response = await authenticated_client.post(
            "/api/v2/segments/",
            json={
                "name": "Broken",
                "description": "Uses an unknown operator",
                "rules": {"field": "visitCount", "operator": "approx", "value": 3},
            },
        )
        assert response.status_code == 400
        assert response.json()["code"] == "RULE_002"
        assert await segment_count(test_db) == 0

    @pytest.mark.asyncio
    async def test_get_segment(self, authenticated_client: AsyncClient, sample_segment):
        """Test getting a specific segment."""
        response = await authenticated_client.get(f"/api/v2/segments/{sample_segment['id']}")
        assert response.status_code == 200
        assert response.json()["name"] == "High Value"

    @pytest.mark.asyncio
    async def test_get_segment_not_found(self, authenticated_client: AsyncClient):
        """Test 404 for a missing segment."""
        response = await authenticated_client.get("/api/v2/segments/99999")
        assert response.status_code == 404
        assert response.json()["code"] == "RES_001"

    @pytest.mark.asyncio
    async def test_list_segments_scoped_to_owner(
        self, authenticated_client: AsyncClient, sample_segment, test_db: AsyncSession
    ):
        """Test that users only see their own segments."""
        other = User(email="other@example.com", name="Other", external_id="idp|other", is_active=True)
        test_db.add(other)
        await test_db.commit()
        test_db.add(
            Segment(
                name="Someone else's",
                description="Not mine",
                rules=HIGH_VALUE_RULE,
                matched_customer_ids=[],
                customer_count=0,
                created_by_user_id=other.id,
            )
        )
        await test_db.commit()

        response = await authenticated_client.get("/api/v2/segments/")
        assert response.status_code == 200

        data = response.json()
        assert data["total"] == 1
        assert [s["id"] for s in data["items"]] == [sample_segment["id"]]

    @pytest.mark.asyncio
    async def test_other_users_segment_is_not_found(
        self, authenticated_client: AsyncClient, sample_customers, test_db: AsyncSession
    ):
        """Test that segments owned by another user cannot be read or changed."""
        other = User(email="other@example.com", name="Other", external_id="idp|other", is_active=True)
        test_db.add(other)
        await test_db.commit()
        foreign = Segment(
            name="Someone else's",
            description="Not mine",
            rules=HIGH_VALUE_RULE,
            matched_customer_ids=[sample_customers[0].id],
            customer_count=1,
            created_by_user_id=other.id,
        )
        test_db.add(foreign)
        await test_db.commit()
        url = f"/api/v2/segments/{foreign.id}"

        responses = [
            await authenticated_client.get(url),
            await authenticated_client.put(
                url,
                json={"name": "Hijacked", "description": "Changed", "rules": HIGH_VALUE_RULE},
            ),
            await authenticated_client.post(f"{url}/refresh"),
            await authenticated_client.get(f"{url}/customers"),
            await authenticated_client.delete(url),
        ]
        assert [r.status_code for r in responses] == [404] * 5
        assert {r.json()["code"] for r in responses} == {"RES_001"}

        await test_db.refresh(foreign)
        assert foreign.name == "Someone else's"

    @pytest.mark.asyncio
    async def test_update_replaces_membership(
        self, authenticated_client: AsyncClient, sample_segment, sample_customers
    ):
        """Test that updating recomputes the matched set from scratch."""
        response = await authenticated_client.put(
            f"/api/v2/segments/{sample_segment['id']}",
            json={
                "name": "Lapsed",
                "description": "No visit in 100 days",
                "rules": {"field": "lastVisit", "operator": "daysAgo", "value": 100},
            },
        )
        assert response.status_code == 200

        data = response.json()
        assert data["name"] == "Lapsed"
        assert data["matched_customer_ids"] == [sample_customers[1].id]
        assert data["customer_count"] == 1

    @pytest.mark.asyncio
    async def test_update_not_found(self, authenticated_client: AsyncClient):
        """Test 404 when updating a missing segment."""
        response = await authenticated_client.put(
            "/api/v2/segments/99999",
            json={"name": "x", "description": "y", "rules": HIGH_VALUE_RULE},
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_update_keeps_previous_definition(
        self, authenticated_client: AsyncClient, sample_segment
    ):
        """Test that a rejected update leaves the segment unchanged."""
        response = await authenticated_client.put(
            f"/api/v2/segments/{sample_segment['id']}",
            json={
                "name": "Broken",
                "description": "Bad rule",
                "rules": {"field": "nope", "operator": "gt", "value": 1},
            },
        )
        assert response.status_code == 400

        response = await authenticated_client.get(f"/api/v2/segments/{sample_segment['id']}")
        assert response.json()["name"] == "High Value"
        assert response.json()["matched_customer_ids"] == sample_segment["matched_customer_ids"]

    @pytest.mark.asyncio
    async def test_delete_segment(self, authenticated_client: AsyncClient, sample_segment):
        """Test deleting a segment."""
        response = await authenticated_client.delete(f"/api/v2/segments/{sample_segment['id']}")
        assert response.status_code == 204

        response = await authenticated_client.get(f"/api/v2/segments/{sample_segment['id']}")
        assert response.status_code == 404


# ============================================
# Snapshot Tests
# ============================================


class TestSegmentSnapshot:
    """Tests for point-in-time membership."""

    @pytest.mark.asyncio
    async def test_customer_changes_do_not_update_snapshot(
        self, authenticated_client: AsyncClient, sample_segment, sample_customers
    ):
        """Test that orders do not recompute membership until refresh."""
        bob = sample_customers[1]
        for _ in range(3):
            response = await authenticated_client.post(
                f"/api/v2/customers/{bob.id}/orders", json={"amount": 300, "status": "COMPLETED"}
            )
            assert response.status_code == 201

        response = await authenticated_client.get(f"/api/v2/segments/{sample_segment['id']}")
        assert bob.id not in response.json()["matched_customer_ids"]

        response = await authenticated_client.post(f"/api/v2/segments/{sample_segment['id']}/refresh")
        assert response.status_code == 200
        data = response.json()
        assert bob.id in data["matched_customer_ids"]
        assert data["customer_count"] == 3

    @pytest.mark.asyncio
    async def test_list_segment_customers(
        self, authenticated_client: AsyncClient, sample_segment, sample_customers
    ):
        """Test paging through snapshot members."""
        response = await authenticated_client.get(
            f"/api/v2/segments/{sample_segment['id']}/customers", params={"page_size": 1}
        )
        assert response.status_code == 200

        data = response.json()
        assert data["total"] == 2
        assert data["segment_id"] == sample_segment["id"]
        assert [c["id"] for c in data["items"]] == [sample_customers[0].id]

        response = await authenticated_client.get(
            f"/api/v2/segments/{sample_segment['id']}/customers", params={"page": 2, "page_size": 1}
        )
        assert [c["id"] for c in response.json()["items"]] == [sample_customers[2].id]

    @pytest.mark.asyncio
    async def test_refresh_not_found(self, authenticated_client: AsyncClient):
        """Test 404 when refreshing a missing segment."""
        response = await authenticated_client.post("/api/v2/segments/99999/refresh")
        assert response.status_code == 404


# ============================================
# Rule Authoring Tests
# ============================================


class FakeGateway:
    """Stands in for the AI gateway."""

    def __init__(self, response: str):
        self.response = response

    async def generate(self, prompt, system_prompt=None):
        return self.response


class TestRuleAuthoring:
    """Tests for field catalogue, parsing and explanation endpoints."""

    @pytest.mark.asyncio
    async def test_field_catalogue(self, authenticated_client: AsyncClient):
        """Test that every rule field and its operators are listed."""
        response = await authenticated_client.get("/api/v2/segments/fields")
        assert response.status_code == 200

        fields = {f["name"]: f for f in response.json()["fields"]}
        assert set(fields) == {"totalSpend", "visitCount", "lastVisit", "createdAt", "email", "name"}
        assert fields["lastVisit"]["data_type"] == "date"
        assert {o["name"] for o in fields["email"]["operators"]} == {
            "contains",
            "startsWith",
            "endsWith",
            "equals",
        }

    @pytest.mark.asyncio
    async def test_parse_rule_expression(self, authenticated_client: AsyncClient):
        """Test textual rule conversion."""
        response = await authenticated_client.post(
            "/api/v2/segments/rules/parse",
            json={"expression": "totalSpend > 500 AND visitCount >= 3"},
        )
        assert response.status_code == 200
        assert response.json() == {"rules": HIGH_VALUE_RULE, "condition_count": 2}

    @pytest.mark.asyncio
    async def test_parse_rule_expression_syntax_error(self, authenticated_client: AsyncClient):
        """Test that syntax errors are reported as validation problems."""
        response = await authenticated_client.post(
            "/api/v2/segments/rules/parse",
            json={"expression": "totalSpend > 500 AND ("},
        )
        assert response.status_code == 422
        assert "position" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_natural_language_parse(self, authenticated_client: AsyncClient):
        """Test AI rule parsing with a stub generator."""
        app.dependency_overrides[get_ai_gateway] = lambda: FakeGateway(json.dumps(HIGH_VALUE_RULE))

        response = await authenticated_client.post(
            "/api/v2/segments/ai/parse",
            json={"query": "big spenders who come back often"},
        )
        assert response.status_code == 200
        assert response.json()["rules"] == HIGH_VALUE_RULE

    @pytest.mark.asyncio
    async def test_natural_language_parse_bad_output(self, authenticated_client: AsyncClient):
        """Test that non-JSON model output is a 502."""
        app.dependency_overrides[get_ai_gateway] = lambda: FakeGateway("I'm not sure.")

        response = await authenticated_client.post(
            "/api/v2/segments/ai/parse",
            json={"query": "big spenders"},
        )
        assert response.status_code == 502
        assert response.json()["code"] == "EXT_001"

    @pytest.mark.asyncio
    async def test_explain_rule(self, authenticated_client: AsyncClient, sample_customers):
        """Test per-condition explanation for one customer."""
        response = await authenticated_client.post(
            "/api/v2/segments/explain",
            json={"rules": HIGH_VALUE_RULE, "customer_id": sample_customers[1].id},
        )
        assert response.status_code == 200

        data = response.json()
        assert data["matched"] is False
        assert [c["matched"] for c in data["conditions"]] == [False, False]
        assert data["conditions"][0]["field"] == "totalSpend"

    @pytest.mark.asyncio
    async def test_explain_unknown_customer(self, authenticated_client: AsyncClient):
        """Test 404 when explaining against a missing customer."""
        response = await authenticated_client.post(
            "/api/v2/segments/explain",
            json={"rules": HIGH_VALUE_RULE, "customer_id": 99999},
        )
        assert response.status_code == 404
