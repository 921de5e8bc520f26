import logging
import re
from typing import List, Optional

from fastapi import FastAPI, Depends, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session

from . import config, database, models, persistence, reporting, schemas
from .allocation import AdjustmentMode
from .exceptions import AuthenticationFailed, InsufficientStock, NotFound, UpstreamUnavailable
from .inventory import CATEGORIES, SUB_CATEGORIES, UNIT_OPTIONS, InventoryRegistry
from .procore import ProcoreClient
from .reconciliation import ProcoreSyncManager

# Configure logging
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Low Voltage Inventory Service",
    description="Tracks low voltage construction materials against Procore projects",
    version=config.APP_VERSION,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Create database tables
models.Base.metadata.create_all(bind=database.engine)

procore_client = ProcoreClient()
registry = InventoryRegistry(procore_client, database.SessionLocal)

ADJUSTMENTS = {
    schemas.AdjustmentType.add: (1, AdjustmentMode.stock),
    schemas.AdjustmentType.remove: (-1, AdjustmentMode.stock),
    schemas.AdjustmentType.allocate: (1, AdjustmentMode.allocation),
    schemas.AdjustmentType.deallocate: (-1, AdjustmentMode.allocation),
}


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(InsufficientStock)
async def insufficient_stock_handler(request: Request, exc: InsufficientStock):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(UpstreamUnavailable)
async def upstream_unavailable_handler(request: Request, exc: UpstreamUnavailable):
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": str(exc)})


@app.exception_handler(AuthenticationFailed)
async def authentication_failed_handler(request: Request, exc: AuthenticationFailed):
    procore = request.app.dependency_overrides.get(get_procore_client, get_procore_client)()
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": str(exc), "login_url": procore.authorization_url()},
    )


# Dependency to get database session
def get_db():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_procore_client() -> ProcoreClient:
    return procore_client


def get_registry() -> InventoryRegistry:
    return registry


def get_procore_session(db: Session = Depends(get_db)):
    """Stored Procore tokens, written back if a call refreshed them"""
    session = persistence.load_session(db, config.PROCORE_SESSION_KEY)
    try:
        yield session
    finally:
        if session.changed:
            persistence.save_session(db, config.PROCORE_SESSION_KEY, session)


async def get_authenticated_session(
    session: schemas.ProcoreSession = Depends(get_procore_session),
    procore: ProcoreClient = Depends(get_procore_client),
) -> schemas.ProcoreSession:
    """Procore session with a usable token; 401 with the login URL otherwise"""
    await procore.authenticate(session)
    return session


def _safe_filename(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", name)


@app.get("/", tags=["Root"])
def read_root():
    """Root endpoint for health checks"""
    return {"status": "ok", "service": "lv-inventory-service", "app": config.APP_NAME}


@app.get("/auth/login", tags=["Auth"])
def login(procore: ProcoreClient = Depends(get_procore_client)):
    """Redirect to the Procore login page"""
    return RedirectResponse(procore.authorization_url())


@app.get("/auth/callback", tags=["Auth"])
async def auth_callback(
    code: str,
    session: schemas.ProcoreSession = Depends(get_procore_session),
    procore: ProcoreClient = Depends(get_procore_client),
):
    """Handle the OAuth callback and store the tokens"""
    logger.info("Handling Procore OAuth callback")
    await procore.exchange_code(session, code)
    return {"status": "authenticated", "expires_at": session.expires_at}


@app.get("/projects", tags=["Projects"])
async def read_projects(
    session: schemas.ProcoreSession = Depends(get_procore_session),
    procore: ProcoreClient = Depends(get_procore_client),
):
    """Projects of the user's first company"""
    await procore.get_me(session)
    companies = await procore.get_companies(session)
    if not companies:
        logger.warning("No companies found for this user")
        raise HTTPException(status_code=404, detail="No companies found for this user")

    company_id = companies[0]["id"]
    logger.info(f"Fetching projects for company {company_id}")
    return await procore.get_projects(session, company_id)


@app.get("/projects/{project_id}", tags=["Projects"])
async def read_project(
    project_id: str,
    session: schemas.ProcoreSession = Depends(get_procore_session),
    procore: ProcoreClient = Depends(get_procore_client),
):
    logger.info(f"Fetching project {project_id}")
    return await procore.get_project(session, project_id)


@app.get("/inventory/options", response_model=schemas.InventoryOptions, tags=["Inventory"])
def read_inventory_options():
    """Categories, sub-categories and units offered for new items"""
    return schemas.InventoryOptions(categories=CATEGORIES, sub_categories=SUB_CATEGORIES, units=UNIT_OPTIONS)


@app.get("/projects/{project_id}/inventory", response_model=List[schemas.InventoryRecord], tags=["Inventory"])
async def read_inventory(
    project_id: str,
    q: Optional[str] = None,
    session: schemas.ProcoreSession = Depends(get_authenticated_session),
    registry: InventoryRegistry = Depends(get_registry),
):
    """All items of a project, optionally narrowed by a free-text term"""
    logger.info(f"Fetching inventory for project {project_id} (q={q!r})")
    async with registry.lock(project_id):
        manager = await registry.open(project_id, session)
        return manager.quick_search(q) if q else manager.items


@app.post("/projects/{project_id}/inventory/load", response_model=List[schemas.InventoryRecord], tags=["Inventory"])
async def load_inventory(
    project_id: str,
    session: schemas.ProcoreSession = Depends(get_authenticated_session),
    registry: InventoryRegistry = Depends(get_registry),
):
    """Reload a project's inventory from Procore (or local storage)"""
    logger.info(f"Reloading inventory for project {project_id}")
    async with registry.lock(project_id):
        return await registry.get(project_id).load_inventory(session)


@app.post("/projects/{project_id}/inventory/save", tags=["Inventory"])
async def save_inventory(
    project_id: str,
    session: schemas.ProcoreSession = Depends(get_authenticated_session),
    registry: InventoryRegistry = Depends(get_registry),
):
    logger.info(f"Saving inventory for project {project_id}")
    async with registry.lock(project_id):
        manager = await registry.open(project_id, session)
        await manager.save_inventory(session)
    return {"status": "saved", "items": len(manager.store)}


@app.post(
    "/projects/{project_id}/inventory",
    response_model=schemas.InventoryRecord,
    status_code=status.HTTP_201_CREATED,
    tags=["Inventory"],
)
async def create_inventory_item(
    project_id: str,
    item: schemas.InventoryItemCreate,
    session: schemas.ProcoreSession = Depends(get_authenticated_session),
    registry: InventoryRegistry = Depends(get_registry),
):
    """Add a new inventory item"""
    logger.info(f"Adding inventory item to project {project_id}: {item.description!r}")
    async with registry.lock(project_id):
        manager = await registry.open(project_id, session)
        record = manager.add_item(item.model_dump())
        await manager.save_inventory(session)
    return record


@app.get("/projects/{project_id}/inventory/search", response_model=List[schemas.InventoryRecord], tags=["Inventory"])
async def search_inventory(
    project_id: str,
    request: Request,
    session: schemas.ProcoreSession = Depends(get_authenticated_session),
    registry: InventoryRegistry = Depends(get_registry),
):
    """Items whose fields contain every given query parameter, e.g. ?category=cable&location=site"""
    criteria = dict(request.query_params)
    logger.info(f"Searching inventory of project {project_id} with {criteria}")
    async with registry.lock(project_id):
        manager = await registry.open(project_id, session)
        return manager.search_items(criteria)


@app.get("/projects/{project_id}/inventory/reorder", response_model=List[schemas.InventoryRecord], tags=["Inventory"])
async def read_items_needing_reorder(
    project_id: str,
    session: schemas.ProcoreSession = Depends(get_authenticated_session),
    registry: InventoryRegistry = Depends(get_registry),
):
    async with registry.lock(project_id):
        manager = await registry.open(project_id, session)
        return manager.get_items_needing_reorder()


@app.get("/projects/{project_id}/inventory/report", response_model=schemas.InventoryReport, tags=["Reports"])
async def read_inventory_report(
    project_id: str,
    request: Request,
    session: schemas.ProcoreSession = Depends(get_authenticated_session),
    registry: InventoryRegistry = Depends(get_registry),
):
    """Inventory summary; query parameters filter the items as in search"""
    filters = dict(request.query_params)
    logger.info(f"Generating inventory report for project {project_id} with filters {filters}")
    async with registry.lock(project_id):
        manager = await registry.open(project_id, session)
        return manager.generate_inventory_report(filters)


@app.get("/projects/{project_id}/inventory/report.json", tags=["Reports"])
async def export_inventory_report(
    project_id: str,
    request: Request,
    session: schemas.ProcoreSession = Depends(get_authenticated_session),
    registry: InventoryRegistry = Depends(get_registry),
):
    """Inventory report as a JSON download"""
    filters = dict(request.query_params)
    async with registry.lock(project_id):
        manager = await registry.open(project_id, session)
        report = manager.generate_inventory_report(filters)

    filename = reporting.export_filename(_safe_filename(project_id), "Inventory_Report", "json")
    return Response(
        content=reporting.export_report_json(report),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/projects/{project_id}/inventory/export.csv", tags=["Reports"])
async def export_inventory_csv(
    project_id: str,
    session: schemas.ProcoreSession = Depends(get_authenticated_session),
    registry: InventoryRegistry = Depends(get_registry),
):
    """All items as a CSV download"""
    logger.info(f"Exporting inventory of project {project_id} to CSV")
    async with registry.lock(project_id):
        manager = await registry.open(project_id, session)
        content = manager.export_to_csv()

    filename = reporting.export_filename(_safe_filename(project_id), "Inventory", "csv")
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/projects/{project_id}/inventory/{item_id}", response_model=schemas.InventoryRecord, tags=["Inventory"])
async def read_inventory_item(
    project_id: str,
    item_id: str,
    session: schemas.ProcoreSession = Depends(get_authenticated_session),
    registry: InventoryRegistry = Depends(get_registry),
):
    async with registry.lock(project_id):
        manager = await registry.open(project_id, session)
        return manager.get_item(item_id)


@app.put("/projects/{project_id}/inventory/{item_id}", response_model=schemas.InventoryRecord, tags=["Inventory"])
async def update_inventory_item(
    project_id: str,
    item_id: str,
    item: schemas.InventoryItemUpdate,
    session: schemas.ProcoreSession = Depends(get_authenticated_session),
    registry: InventoryRegistry = Depends(get_registry),
):
    """Update an inventory item"""
    logger.info(f"Updating item {item_id} in project {project_id}")
    async with registry.lock(project_id):
        manager = await registry.open(project_id, session)
        record = manager.update_item(item_id, item.model_dump(exclude_unset=True))
        await manager.save_inventory(session)
    return record


@app.delete("/projects/{project_id}/inventory/{item_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Inventory"])
async def delete_inventory_item(
    project_id: str,
    item_id: str,
    session: schemas.ProcoreSession = Depends(get_authenticated_session),
    registry: InventoryRegistry = Depends(get_registry),
):
    """Delete an inventory item"""
    logger.info(f"Deleting item {item_id} from project {project_id}")
    async with registry.lock(project_id):
        manager = await registry.open(project_id, session)
        manager.delete_item(item_id)
        await manager.save_inventory(session)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post(
    "/projects/{project_id}/inventory/{item_id}/adjust",
    response_model=schemas.InventoryRecord,
    tags=["Inventory"],
)
async def adjust_inventory_item(
    project_id: str,
    item_id: str,
    adjustment: schemas.QuantityAdjustment,
    session: schemas.ProcoreSession = Depends(get_authenticated_session),
    registry: InventoryRegistry = Depends(get_registry),
):
    """Add, remove, allocate or return quantity"""
    sign, mode = ADJUSTMENTS[adjustment.type]
    async with registry.lock(project_id):
        manager = await registry.open(project_id, session)
        record = manager.adjust_quantity(item_id, sign * adjustment.quantity, mode == AdjustmentMode.allocation)
        await manager.save_inventory(session)

    logger.info(
        f"Inventory adjustment: item={item_id} type={adjustment.type.value} "
        f"quantity={adjustment.quantity} notes={adjustment.notes!r} project={project_id}"
    )
    return record


@app.post("/projects/{project_id}/sync/purchase-orders", response_model=schemas.SyncResult, tags=["Sync"])
async def sync_purchase_orders(
    project_id: str,
    session: schemas.ProcoreSession = Depends(get_authenticated_session),
    registry: InventoryRegistry = Depends(get_registry),
    procore: ProcoreClient = Depends(get_procore_client),
):
    """Create or top up items from the project's low voltage purchase orders"""
    async with registry.lock(project_id):
        manager = await registry.open(project_id, session)
        updated = await ProcoreSyncManager(procore).sync_with_purchase_orders(session, manager)
    return schemas.SyncResult(project_id=project_id, updated_items=updated)


@app.post("/projects/{project_id}/sync/rfis", response_model=List[schemas.ProductMention], tags=["Sync"])
async def sync_rfis(
    project_id: str,
    session: schemas.ProcoreSession = Depends(get_authenticated_session),
    procore: ProcoreClient = Depends(get_procore_client),
):
    """Product mentions found in responses to low voltage RFIs"""
    return await ProcoreSyncManager(procore).sync_with_rfis(session, project_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("lv_inventory_service.main:app", host="0.0.0.0", port=8000, reload=True)
