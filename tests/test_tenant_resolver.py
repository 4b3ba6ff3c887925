from __future__ import annotations

import pytest

from zapcart.models.customer import Customer
from zapcart.models.tenant import Tenant
from zapcart.models.whatsapp_integration import WhatsAppIntegration
from zapcart.services.tenant_resolver import TenantConflictError, TenantResolutionError, TenantResolver
from tests.fixtures_data import GROUP_NAME, INSTANCE_ID


def _other_tenant(db) -> Tenant:
    other = Tenant(slug="brecho-da-lu", name="Brechó da Lu", is_active=True)
    db.add(other)
    db.commit()
    return other


def test_instance_id_takes_precedence(db, tenant) -> None:
    resolved = TenantResolver.resolve(db, instance_id=INSTANCE_ID, group_name="Outro grupo", phone=None)

    assert resolved.id == tenant.id


def test_falls_back_to_group_then_customer(db, tenant) -> None:
    other = _other_tenant(db)
    db.add(Customer(tenant_id=other.id, phone="21999998888"))
    db.commit()

    by_group = TenantResolver.resolve(db, instance_id="desconhecida", group_name=f"{GROUP_NAME} ", phone=None)
    by_customer = TenantResolver.resolve(db, instance_id=None, group_name=None, phone="21999998888")

    assert by_group.id == tenant.id
    assert by_customer.id == other.id


def test_instance_shared_by_two_tenants_is_a_conflict(db, tenant) -> None:
    other = _other_tenant(db)
    db.add(WhatsAppIntegration(tenant_id=other.id, provider="zapi", instance_id=INSTANCE_ID, token="t", is_active=True))
    db.commit()

    with pytest.raises(TenantConflictError):
        TenantResolver.resolve(db, instance_id=INSTANCE_ID, group_name=GROUP_NAME, phone=None)


def test_unresolvable_event_raises(db, tenant) -> None:
    with pytest.raises(TenantResolutionError):
        TenantResolver.resolve(db, instance_id="desconhecida", group_name="Sem grupo", phone="31988887777")


def test_inactive_tenant_is_not_resolved(db, tenant) -> None:
    tenant.is_active = False
    db.commit()

    assert TenantResolver.resolve_by_instance(db, INSTANCE_ID) is None
