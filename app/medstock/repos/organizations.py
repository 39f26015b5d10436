from __future__ import annotations

from sqlalchemy import or_, select

from app.medstock.db.models import Department, Organization, Product


class OrganizationRepository:
    def __init__(self, db):
        self.db = db

    def get(self, organization_id: str) -> Organization | None:
        return self.db.get(Organization, organization_id)

    def get_department(self, organization_id: str, department_id: str, *, active_only: bool = True) -> Department | None:
        stmt = select(Department).where(Department.id == department_id, Department.organization_id == organization_id)
        if active_only:
            stmt = stmt.where(Department.is_active.is_(True))
        return self.db.execute(stmt).scalars().first()

    def list_departments(self, organization_id: str) -> list[Department]:
        stmt = select(Department).where(Department.organization_id == organization_id).order_by(Department.name)
        return self.db.execute(stmt).scalars().all()

    def department_slug_exists(self, organization_id: str, slug: str) -> bool:
        stmt = select(Department.id).where(Department.organization_id == organization_id, Department.slug == slug)
        return self.db.execute(stmt).first() is not None

    def get_products(self, organization_id: str, product_ids, *, active_only: bool = True) -> list[Product]:
        ids = list(product_ids)
        if not ids:
            return []
        stmt = select(Product).where(Product.organization_id == organization_id, Product.id.in_(ids))
        if active_only:
            stmt = stmt.where(Product.is_active.is_(True))
        return self.db.execute(stmt).scalars().all()

    def list_products(self, organization_id: str, *, search: str | None = None) -> list[Product]:
        stmt = select(Product).where(Product.organization_id == organization_id)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(Product.code.ilike(pattern), Product.name.ilike(pattern)))
        return self.db.execute(stmt.order_by(Product.code)).scalars().all()

    def product_code_exists(self, organization_id: str, code: str) -> bool:
        stmt = select(Product.id).where(Product.organization_id == organization_id, Product.code == code)
        return self.db.execute(stmt).first() is not None
