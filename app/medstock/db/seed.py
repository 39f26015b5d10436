from sqlalchemy import select

from app.medstock.core.config import settings
from app.medstock.core.enums import OrgRole
from app.medstock.core.security import get_password_hash
from app.medstock.db.models import Department, Organization, User
from app.medstock.services.inventory import slugify


def _get_or_create_organization(db):
    organization = (
        db.execute(select(Organization).where(Organization.slug == settings.DEFAULT_ORGANIZATION_SLUG))
        .scalars()
        .first()
    )
    if organization:
        return organization
    organization = Organization(name=settings.DEFAULT_ORGANIZATION_NAME, slug=settings.DEFAULT_ORGANIZATION_SLUG)
    db.add(organization)
    db.flush()
    return organization


def _get_or_create_departments(db, organization):
    existing = {
        department.slug: department
        for department in db.execute(select(Department).where(Department.organization_id == organization.id))
        .scalars()
        .all()
    }
    departments = []
    for name in settings.DEFAULT_DEPARTMENTS:
        slug = slugify(name)
        department = existing.get(slug)
        if department is None:
            department = Department(organization_id=organization.id, name=name, slug=slug, is_active=True)
            db.add(department)
        departments.append(department)
    db.flush()
    return departments


def _get_or_create_owner(db, organization, department):
    user = (
        db.execute(
            select(User).where(User.username == settings.OWNER_USERNAME, User.organization_id == organization.id)
        )
        .scalars()
        .first()
    )
    if user:
        return user
    user = User(
        organization_id=organization.id,
        department_id=department.id if department is not None else None,
        username=settings.OWNER_USERNAME,
        email=settings.OWNER_EMAIL,
        hashed_password=get_password_hash(settings.OWNER_PASSWORD),
        role=OrgRole.OWNER.value,
        status="active",
        is_active=True,
    )
    db.add(user)
    return user


def run_seed(db):
    organization = _get_or_create_organization(db)
    departments = _get_or_create_departments(db, organization)
    _get_or_create_owner(db, organization, departments[0] if departments else None)
    db.commit()
