from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from zapcart.models.customer import Customer
from zapcart.models.tenant import Tenant
from zapcart.models.whatsapp_group import WhatsAppGroup
from zapcart.models.whatsapp_integration import WhatsAppIntegration

logger = logging.getLogger(__name__)


class TenantResolutionError(Exception):
    pass


class TenantConflictError(TenantResolutionError):
    """Canal de envio vinculado a mais de um tenant."""


class TenantResolver:
    """Resolve o tenant de um evento: instância, depois grupo, depois cliente."""

    @staticmethod
    def resolve_by_instance(db: Session, instance_id: str | None) -> Tenant | None:
        if not instance_id:
            return None
        tenant_ids = {
            row.tenant_id
            for row in db.query(WhatsAppIntegration.tenant_id)
            .filter(
                WhatsAppIntegration.instance_id == instance_id,
                WhatsAppIntegration.is_active.is_(True),
            )
            .all()
        }
        if len(tenant_ids) > 1:
            logger.error(
                "instanceId vinculado a mais de um tenant",
                extra={"integration": instance_id},
            )
            raise TenantConflictError(f"instanceId {instance_id} vinculado a {len(tenant_ids)} tenants")
        if not tenant_ids:
            return None
        return db.query(Tenant).filter(Tenant.id == tenant_ids.pop(), Tenant.is_active.is_(True)).first()

    @staticmethod
    def resolve_by_group(db: Session, group_name: str | None) -> Tenant | None:
        if not group_name:
            return None
        group = (
            db.query(WhatsAppGroup)
            .filter(WhatsAppGroup.group_name == group_name.strip(), WhatsAppGroup.is_active.is_(True))
            .order_by(WhatsAppGroup.id.asc())
            .first()
        )
        if not group:
            return None
        return db.query(Tenant).filter(Tenant.id == group.tenant_id, Tenant.is_active.is_(True)).first()

    @staticmethod
    def resolve_by_customer(db: Session, phone: str | None) -> Tenant | None:
        if not phone:
            return None
        customer = (
            db.query(Customer)
            .filter(Customer.phone == phone)
            .order_by(Customer.created_at.desc(), Customer.id.desc())
            .first()
        )
        if not customer:
            return None
        return db.query(Tenant).filter(Tenant.id == customer.tenant_id, Tenant.is_active.is_(True)).first()

    @classmethod
    def resolve(
        cls,
        db: Session,
        *,
        instance_id: str | None,
        group_name: str | None,
        phone: str | None,
    ) -> Tenant:
        tenant = cls.resolve_by_instance(db, instance_id)
        strategy = "instance"
        if tenant is None:
            tenant = cls.resolve_by_group(db, group_name)
            strategy = "group"
        if tenant is None:
            tenant = cls.resolve_by_customer(db, phone)
            strategy = "customer"
        if tenant is None:
            raise TenantResolutionError("Tenant não encontrado para o evento")

        logger.info(
            "Tenant resolvido por %s",
            strategy,
            extra={"tenant_id": tenant.id, "group_name": group_name, "phone": phone},
        )
        return tenant
