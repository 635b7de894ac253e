from fastapi import FastAPI, Depends, Query, Body, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pymongo.database import Database
from pymongo.errors import PyMongoError
from datetime import datetime, timedelta
from typing import List, Optional
from contextlib import asynccontextmanager
import json
import logging

import config
from auth import (
    authenticate_admin, change_password as change_admin_password, create_access_token,
    ensure_default_admin, get_current_admin, verify_token
)
from campaigns import create_campaign, list_admin_campaigns, list_public_campaigns, stats_for, update_campaign
from database import connect, close, get_db
from donations import DonationService
from exceptions import AuthError, DonationError, ValidationError
from exports import build_donation_export
from payments import RazorpayClient, create_gateway_client
from schemas import (
    AdminCampaign, AdminLogin, CampaignCreate, CampaignStatsOut, CampaignUpdate, DashboardStats,
    PasswordChange, PaymentVerification, PublicCampaign, PublicDonation, Token
)
from security_middleware import (
    SecurityHeadersMiddleware,
    RequestValidationMiddleware,
    IPWhitelistMiddleware,
    setup_rate_limits,
)
from store import AdminStore, CampaignStore, DonationStore
from websocket_manager import manager as ws_manager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.configure_logging()
    logger.info("Starting up donation API...")

    client, db = connect()
    app.state.db = db
    app.state.gateway = create_gateway_client()
    if not app.state.gateway.configured:
        logger.warning("Razorpay credentials missing: hosted checkout and QR donations will fail")

    DonationStore(db).ensure_indexes()
    CampaignStore(db).ensure_indexes()
    admins = AdminStore(db)
    admins.ensure_indexes()
    ensure_default_admin(admins)

    logger.info("Server ready to accept connections")

    yield

    logger.info("Shutting down server...")
    close(client)


app = FastAPI(
    title="NGO Donation Hub",
    description="Donation intake, payment verification and campaign totals",
    version="1.0.0",
    lifespan=lifespan,
)

limiter = setup_rate_limits(app)

# Security Middleware (order matters!)
app.add_middleware(RequestValidationMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
if config.ADMIN_IP_WHITELIST:
    app.add_middleware(IPWhitelistMiddleware, whitelist=config.ADMIN_IP_WHITELIST)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


@app.exception_handler(DonationError)
async def donation_error_handler(request: Request, exc: DonationError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{type(exc).__name__} on {request.url.path}: {exc.message}")

    content = {"detail": exc.public_message}
    if isinstance(exc, ValidationError) and exc.errors:
        content["errors"] = exc.errors
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


# Dependencies

def get_gateway(request: Request) -> RazorpayClient:
    return request.app.state.gateway


def get_donation_store(db: Database = Depends(get_db)) -> DonationStore:
    return DonationStore(db)


def get_campaign_store(db: Database = Depends(get_db)) -> CampaignStore:
    return CampaignStore(db)


def get_admin_store(db: Database = Depends(get_db)) -> AdminStore:
    return AdminStore(db)


def get_donation_service(
    donations: DonationStore = Depends(get_donation_store),
    gateway: RazorpayClient = Depends(get_gateway),
) -> DonationService:
    return DonationService(donations, gateway)


# Public endpoints
@app.post("/api/donations", status_code=201)
@limiter.limit("10/minute")  # Max 10 donation submissions per minute per IP
async def submit_donation(
    request: Request,
    payload: dict = Body(...),
    service: DonationService = Depends(get_donation_service),
):
    """Start a donation. The response tells the client how to collect the payment."""
    result = await run_in_threadpool(service.submit_donation, payload, request.headers.get("user-agent"))
    await ws_manager.broadcast_donation_event(result.event, result.donation)
    return result.response


@app.post("/api/donations/verify")
async def verify_donation(
    verification: PaymentVerification,
    service: DonationService = Depends(get_donation_service),
):
    """Verify a signed checkout callback and record the completed donation."""
    result = await run_in_threadpool(
        service.verify_and_finalize, verification.payment_id, verification.order_id, verification.signature
    )
    await ws_manager.broadcast_donation_event(result.event, result.donation)
    return result.response


@app.post("/api/donations/qr/{qr_id}/confirm")
@limiter.limit("30/minute")
async def confirm_qr_donation(
    request: Request,
    qr_id: str,
    service: DonationService = Depends(get_donation_service),
):
    """Ask the gateway whether the QR code was paid and record the donation if so."""
    result = await run_in_threadpool(service.confirm_qr_payment, qr_id)
    await ws_manager.broadcast_donation_event(result.event, result.donation)
    return result.response


@app.get("/api/donations/recent", response_model=List[PublicDonation])
def list_recent_donations(
    limit: int = Query(config.RECENT_DONATIONS_LIMIT, ge=1, le=50),
    service: DonationService = Depends(get_donation_service),
):
    """Recent approved, non-anonymous donations for the public feed."""
    return service.list_public_recent_donations(limit)


@app.get("/api/campaigns", response_model=List[PublicCampaign])
def list_campaigns(
    campaigns: CampaignStore = Depends(get_campaign_store),
    donations: DonationStore = Depends(get_donation_store),
):
    """Active campaigns with their raised amount and donor count."""
    return list_public_campaigns(campaigns, donations)


@app.get("/api/campaigns/stats", response_model=CampaignStatsOut)
def campaign_stats(
    title: str = Query(..., min_length=1),
    donations: DonationStore = Depends(get_donation_store),
):
    stats = stats_for(donations, title)
    return {"title": title, "raised": stats.raised, "donors": stats.donors}


# Admin authentication endpoints
@app.post("/api/admin/login", response_model=Token)
@limiter.limit("5/minute")  # Max 5 login attempts per minute per IP
def login_admin(
    request: Request,
    admin_credentials: AdminLogin,
    admins: AdminStore = Depends(get_admin_store),
):
    """Admin login endpoint with rate limiting to prevent brute force attacks."""
    admin = authenticate_admin(admins, admin_credentials.username, admin_credentials.password)
    access_token = create_access_token(
        data={"sub": admin["username"]},
        expires_delta=timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    return {"access_token": access_token, "token_type": "bearer"}


@app.put("/api/admin/change-password")
def change_password(
    passwords: PasswordChange,
    current_admin: str = Depends(get_current_admin),
    admins: AdminStore = Depends(get_admin_store),
):
    change_admin_password(admins, current_admin, passwords.current_password, passwords.new_password)
    return {"success": True, "message": "Password changed successfully"}


# Protected admin endpoints
@app.get("/api/admin/dashboard-stats", response_model=DashboardStats)
def get_dashboard_stats(
    current_admin: str = Depends(get_current_admin),
    service: DonationService = Depends(get_donation_service),
):
    return service.dashboard_stats()


@app.get("/api/admin/donations")
def list_donations(
    status: Optional[str] = Query(None),
    payment_method: Optional[str] = Query(None, alias="paymentMethod"),
    campaign: Optional[str] = Query(None),
    approved: Optional[bool] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    current_admin: str = Depends(get_current_admin),
    service: DonationService = Depends(get_donation_service),
):
    """Every donation, any status or approval state, newest first."""
    return service.list_all_donations_for_admin(
        status=status, payment_method=payment_method, campaign=campaign,
        approved=approved, skip=skip, limit=limit
    )


@app.get("/api/admin/donations/export")
def export_donations(
    format: str = Query("csv", pattern="^(csv|excel)$"),
    status: Optional[str] = Query(None),
    campaign: Optional[str] = Query(None),
    current_admin: str = Depends(get_current_admin),
    service: DonationService = Depends(get_donation_service),
):
    """Export donations as CSV or Excel."""
    rows = service.list_all_donations_for_admin(status=status, campaign=campaign, limit=0)
    output, media_type, filename = build_donation_export(rows, format)
    return StreamingResponse(
        output,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )


@app.get("/api/admin/donations/{donation_id}")
def get_donation(
    donation_id: str,
    current_admin: str = Depends(get_current_admin),
    service: DonationService = Depends(get_donation_service),
):
    return service.get_donation(donation_id)


@app.put("/api/admin/donations/{donation_id}/approve")
async def approve_donation(
    donation_id: str,
    current_admin: str = Depends(get_current_admin),
    service: DonationService = Depends(get_donation_service),
):
    """Approve a donation after the payment was confirmed out of band."""
    result = await run_in_threadpool(service.approve_donation, donation_id, current_admin)
    if result.event:
        await ws_manager.broadcast_donation_event(result.event, result.donation)
        await ws_manager.broadcast_stats_update(await run_in_threadpool(service.dashboard_stats))
    return result.response


@app.get("/api/admin/campaigns", response_model=List[AdminCampaign])
def admin_list_campaigns(
    current_admin: str = Depends(get_current_admin),
    campaigns: CampaignStore = Depends(get_campaign_store),
    donations: DonationStore = Depends(get_donation_store),
):
    return list_admin_campaigns(campaigns, donations)


@app.post("/api/admin/campaigns", response_model=AdminCampaign, status_code=201)
def admin_create_campaign(
    campaign: CampaignCreate,
    current_admin: str = Depends(get_current_admin),
    campaigns: CampaignStore = Depends(get_campaign_store),
):
    return create_campaign(campaigns, campaign)


@app.put("/api/admin/campaigns/{campaign_id}", response_model=AdminCampaign)
def admin_update_campaign(
    campaign_id: str,
    changes: CampaignUpdate,
    current_admin: str = Depends(get_current_admin),
    campaigns: CampaignStore = Depends(get_campaign_store),
    donations: DonationStore = Depends(get_donation_store),
):
    return update_campaign(campaigns, donations, campaign_id, changes)


# WebSocket endpoint for real-time updates
@app.websocket("/ws/admin")
async def websocket_endpoint(websocket: WebSocket, token: str = Query(...)):
    """
    Real-time donation events for admin dashboards.
    Requires JWT token authentication via query parameter.

    Usage: ws://localhost:8000/ws/admin?token=<jwt_token>
    """
    admin_username = verify_token(token)
    if not admin_username:
        await websocket.close(code=1008, reason="Invalid authentication token")
        return

    db = websocket.app.state.db
    admin = await run_in_threadpool(AdminStore(db).find_by_username, admin_username)
    if not admin or not admin.get("isActive", True):
        await websocket.close(code=1008, reason="Admin not found or inactive")
        return

    await ws_manager.connect(websocket, admin_username)
    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                continue

            if message.get("type") == "ping":
                await websocket.send_json({
                    "type": "pong",
                    "timestamp": datetime.now().isoformat()
                })
            elif message.get("type") == "request_stats":
                service = DonationService(DonationStore(db), websocket.app.state.gateway)
                await ws_manager.send_personal_message({
                    "type": "stats_update",
                    "data": await run_in_threadpool(service.dashboard_stats),
                    "timestamp": datetime.now().isoformat()
                }, websocket)
    except WebSocketDisconnect:
        ws_manager.disconnect(websocket, admin_username)


# Health check endpoint
@app.get("/health")
def health_check(request: Request):
    database = "connected"
    try:
        request.app.state.db.client.admin.command("ping")
    except (AttributeError, PyMongoError) as e:
        logger.error(f"Health check could not reach the database: {e}")
        database = "unavailable"
    return {
        "status": "healthy" if database == "connected" else "degraded",
        "database": database,
        "timestamp": datetime.utcnow(),
        "websocket_connections": ws_manager.get_connection_count(),
        "connected_admins": ws_manager.get_connected_admins()
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
