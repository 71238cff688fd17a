"""
Tests for the hybrid tenant scope filter
"""
from identity.scope import ScopeFilterBuilder
from storage.predicates import NEVER, Eq, In, Or


class TestScopeFilterBuilder:
    """Test tenant OR legacy owner filters"""

    def test_tenant_only(self):
        """Test a tenant without owners filters on the tenant column"""
        assert ScopeFilterBuilder().build("clinic-1") == Eq("clinic_id", "clinic-1")

    def test_owners_only(self):
        """Test owners without a tenant filter on the owner column"""
        assert ScopeFilterBuilder().build(None, ["user-1", "user-2"]) == In("owner_id", ("user-1", "user-2"))

    def test_tenant_and_owners(self):
        """Test both inputs are ORed together"""
        predicate = ScopeFilterBuilder().build("clinic-1", ["user-1"])
        assert predicate == Or((Eq("clinic_id", "clinic-1"), In("owner_id", ("user-1",))))

    def test_no_inputs_matches_nothing(self):
        """Test an empty scope never matches any row"""
        predicate = ScopeFilterBuilder().build(None, [])
        assert predicate is NEVER
        assert not predicate.matches({"clinic_id": None, "owner_id": None})

    def test_blank_owner_ids_are_ignored(self):
        """Test empty owner ids do not widen the scope"""
        assert ScopeFilterBuilder().build("", ["", None]) is NEVER

    def test_custom_columns(self):
        """Test column names are configurable"""
        builder = ScopeFilterBuilder(tenant_column="practice_id", owner_column="user_id")
        predicate = builder.build("p-1", ["u-1"])
        assert predicate.matches({"practice_id": "p-1"})
        assert predicate.matches({"user_id": "u-1"})
        assert not predicate.matches({"clinic_id": "p-1"})

    def test_filters_store_rows(self, store):
        """Test the filter selects tenant rows and legacy rows only"""
        store.insert("scheduled_actions", {"id": "a1", "clinic_id": "clinic-1", "owner_id": None})
        store.insert("scheduled_actions", {"id": "a2", "clinic_id": None, "owner_id": "user-1"})
        store.insert("scheduled_actions", {"id": "a3", "clinic_id": "clinic-2", "owner_id": "user-9"})

        rows = store.select("scheduled_actions", ScopeFilterBuilder().build("clinic-1", ["user-1"]),
                            order_by="id")
        assert [row["id"] for row in rows] == ["a1", "a2"]
