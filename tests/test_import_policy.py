"""Tests for the import policy registry."""
import pytest

from app.schemas.imports import ImportServiceMetadata
from app.services.department_import import DepartmentImportPolicy
from app.services.import_errors import ImportServiceError, NotFoundError
from app.services.import_policy import ImportPolicyRegistry, registry


def policy(module, dependencies=(), priority=100):
    metadata = ImportServiceMetadata(
        module=module,
        domain="inventory",
        display_name=module.title(),
        dependencies=list(dependencies),
        priority=priority,
    )
    return type(f"{module.title()}Policy", (DepartmentImportPolicy,), {"metadata": metadata})


def test_departments_registered():
    """Test that the departments module is available by default."""
    assert "departments" in [meta.module for meta in registry.modules()]
    assert isinstance(registry.get("departments"), DepartmentImportPolicy)


def test_unknown_module():
    with pytest.raises(NotFoundError):
        ImportPolicyRegistry().get("spaceships")


def test_duplicate_registration_rejected():
    local = ImportPolicyRegistry()
    local.register(policy("drugs"))

    with pytest.raises(ImportServiceError):
        local.register(policy("drugs"))


def test_import_order_puts_dependencies_first():
    """Test that modules follow their dependencies, then priority and name."""
    local = ImportPolicyRegistry()
    local.register(policy("budgets", ["departments", "budget_types"], priority=1))
    local.register(policy("departments", priority=2))
    local.register(policy("budget_types", priority=2))
    local.register(policy("drugs", ["departments"], priority=5))
    local.register(policy("locations", priority=3))

    order = [meta.module for meta in local.import_order()]

    assert order == ["budget_types", "departments", "budgets", "locations", "drugs"]


def test_import_order_detects_cycles():
    local = ImportPolicyRegistry()
    local.register(policy("a", ["b"]))
    local.register(policy("b", ["a"]))
    local.register(policy("c"))

    with pytest.raises(ImportServiceError) as exc_info:
        local.import_order()
    assert "a, b" in exc_info.value.message


def test_import_order_unknown_dependency():
    local = ImportPolicyRegistry()
    local.register(policy("budgets", ["budget_types"]))

    with pytest.raises(ImportServiceError):
        local.import_order()
