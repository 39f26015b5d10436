from fastapi import APIRouter, Depends, Request

from app.medstock.core.context import Actor
from app.medstock.core.deps import get_actor, require_org_role
from app.medstock.core.enums import OrgRole
from app.medstock.db.session import get_db
from app.medstock.repos.organizations import OrganizationRepository
from app.medstock.schemas.organizations import ProductCreateRequest, ProductListResponse, ProductResponse
from app.medstock.services.audit import record_actor_event
from app.medstock.services.inventory import InventoryService

router = APIRouter()


@router.get("/medstock/products", response_model=ProductListResponse)
def list_products(search: str | None = None, actor: Actor = Depends(get_actor), db=Depends(get_db)):
    rows = OrganizationRepository(db).list_products(actor.organization_id, search=search)
    return ProductListResponse(rows=[ProductResponse.model_validate(row) for row in rows])


@router.post("/medstock/products", response_model=ProductResponse, status_code=201)
def create_product(
    request: Request,
    payload: ProductCreateRequest,
    actor: Actor = Depends(require_org_role(OrgRole.ADMIN, OrgRole.OWNER)),
    db=Depends(get_db),
):
    product = InventoryService(db).create_product(
        actor.organization_id,
        code=payload.code,
        name=payload.name,
        generic_name=payload.generic_name,
        base_unit=payload.base_unit,
    )
    response = ProductResponse.model_validate(product)
    record_actor_event(
        db,
        request,
        actor,
        action="products.create",
        entity_type="product",
        entity_id=product.id,
        after=response.model_dump(mode="json"),
    )
    return response
