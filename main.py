from fastapi import FastAPI, Depends, HTTPException, status, UploadFile, File, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.orm import Session
from sqlalchemy import desc, or_, func
import pandas as pd
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from io import BytesIO
from typing import Optional
import json
import logging

import campaign_service
import push_service
import withdrawal_service
from config import (
    ACCESS_TOKEN_EXPIRE_MINUTES, ADMIN_EMAIL, ADMIN_IP_WHITELIST, ADMIN_PASSWORD, ADMIN_USERNAME,
    ALLOWED_ORIGINS, UPLOAD_DIR
)
from coupon_rules import check_redeemable
from database import engine, Base, get_db, SessionLocal
from errors import ConflictError, DomainError, NotFoundError, ValidationFailed
from models import Admin, Campaign, Coupon, Submission, User, Withdrawal
from schemas import (
    AdminLogin, Token, PasswordChange, CampaignCreate, CampaignUpdate, StatusChange, SubmissionCreate,
    SubmissionRate, DistributePrizes, WithdrawalRequest, WithdrawalProcess, WithdrawalCancel,
    CouponCreate, CouponRedeem, PushSubscribe, PushMessage, PushToUser, PushToCampaign
)
from serializers import (
    serialize_campaign, serialize_coupon, serialize_submission, serialize_user, serialize_withdrawal
)
from auth import authenticate_admin, verify_password, get_password_hash, create_access_token, verify_token
from file_utils import ensure_directories, save_upload_file_securely, public_url, cleanup_temp_files
from security_middleware import (
    SecurityHeadersMiddleware,
    RequestValidationMiddleware,
    IPWhitelistMiddleware,
    setup_rate_limits,
)
from websocket_manager import manager as ws_manager

logger = logging.getLogger(__name__)


def seed_default_admin(db: Session):
    """Create the configured admin account if it does not exist yet."""
    admin = db.query(Admin).filter(Admin.username == ADMIN_USERNAME).first()
    if admin:
        return
    db.add(Admin(
        username=ADMIN_USERNAME,
        email=ADMIN_EMAIL,
        hashed_password=get_password_hash(ADMIN_PASSWORD),
        is_active=True
    ))
    db.commit()
    logger.info(f"Default admin user created: {ADMIN_USERNAME}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting ArtAdventureHub admin API...")

    Base.metadata.create_all(bind=engine)
    ensure_directories()
    cleanup_temp_files()

    db = SessionLocal()
    try:
        seed_default_admin(db)
    finally:
        db.close()

    logger.info("Server ready to accept connections")
    yield
    logger.info("Shutting down server...")


app = FastAPI(
    title="ArtAdventureHub Admin API",
    description="Campaigns, judging, prize distribution, withdrawals, coupons and push notifications",
    version="1.0.0",
    lifespan=lifespan,
)

limiter = setup_rate_limits(app)

# Security Middleware (order matters!)
app.add_middleware(RequestValidationMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
if ADMIN_IP_WHITELIST:
    app.add_middleware(IPWhitelistMiddleware, whitelist=ADMIN_IP_WHITELIST)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.mount("/uploads", StaticFiles(directory=str(UPLOAD_DIR), check_dir=False), name="uploads")


# Every error leaves as {success: false, message}; the console shows `message` verbatim
def _error_response(status_code: int, message: str, headers=None, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "detail": message, **extra},
        headers=headers,
    )


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    return _error_response(exc.status_code, exc.message, **exc.extra)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    message = errors[0]["msg"].removeprefix("Value error, ") if errors else "Invalid request"
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"success": False, "message": message, "detail": errors},
    )


# Security scheme
security = HTTPBearer()


async def get_current_admin(credentials: HTTPAuthorizationCredentials = Depends(security)):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    username = verify_token(credentials.credentials)
    if username is None:
        raise credentials_exception
    return username


def get_push_dispatcher() -> push_service.PushDispatcher:
    return push_service.PushDispatcher()


def _export(rows: list, basename: str, format: str) -> StreamingResponse:
    df = pd.DataFrame(rows)
    filename = f"{basename}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.{'csv' if format == 'csv' else 'xlsx'}"
    output = BytesIO()
    if format == "excel":
        df.to_excel(output, index=False, engine='openpyxl')
        media_type = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    else:
        df.to_csv(output, index=False)
        media_type = "text/csv"
    output.seek(0)
    return StreamingResponse(
        output,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )


# Admin authentication endpoints
@app.post("/api/admin/login", response_model=Token)
@limiter.limit("5/minute")
async def login_admin(request: Request, admin_credentials: AdminLogin, db: Session = Depends(get_db)):
    """Admin login endpoint with rate limiting to prevent brute force attacks."""
    admin = authenticate_admin(db, admin_credentials.username, admin_credentials.password)
    if not admin:
        logger.warning(f"Failed admin login for '{admin_credentials.username}'")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials"
        )

    access_token = create_access_token(
        data={"sub": admin.username},
        expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    return {"access_token": access_token, "token_type": "bearer", "expires_in": ACCESS_TOKEN_EXPIRE_MINUTES * 60}


@app.get("/api/admin/me")
async def get_me(current_admin: str = Depends(get_current_admin), db: Session = Depends(get_db)):
    admin = db.query(Admin).filter(Admin.username == current_admin).first()
    if not admin:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Admin user not found")
    return {"success": True, "admin": {"username": admin.username, "email": admin.email}}


@app.put("/api/admin/change-password")
async def change_password(
    payload: PasswordChange,
    current_admin: str = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """Change admin password."""
    admin = db.query(Admin).filter(Admin.username == current_admin).first()
    if not admin:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Admin user not found")

    if not verify_password(payload.current_password, admin.hashed_password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")

    admin.hashed_password = get_password_hash(payload.new_password)
    db.commit()
    return {"success": True, "message": "Password changed successfully"}


# Campaigns (static admin paths must precede /admin/{campaign_id})
@app.get("/api/campaigns/admin/all")
async def list_campaigns(
    status_filter: Optional[str] = Query(None, alias="status"),
    current_admin: str = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    query = db.query(Campaign)
    if status_filter and status_filter != "all":
        query = query.filter(Campaign.status == status_filter)
    campaigns = query.order_by(desc(Campaign.created_at), desc(Campaign.id)).all()

    counts = dict(
        db.query(Submission.campaign_id, func.count(Submission.id)).group_by(Submission.campaign_id).all()
    )
    return {
        "success": True,
        "count": len(campaigns),
        "campaigns": [serialize_campaign(c, counts.get(c.id, 0)) for c in campaigns],
    }


@app.get("/api/campaigns/admin/stats")
async def get_dashboard_stats(current_admin: str = Depends(get_current_admin), db: Session = Depends(get_db)):
    return {"success": True, "stats": campaign_service.dashboard_stats(db)}


@app.post("/api/campaigns/admin/create", status_code=status.HTTP_201_CREATED)
async def create_campaign(
    payload: CampaignCreate,
    current_admin: str = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    campaign = campaign_service.create_campaign(db, payload.model_dump())
    return {
        "success": True,
        "message": "Campaign created successfully",
        "campaign": serialize_campaign(campaign, 0),
    }


@app.post("/api/campaigns/admin/distribute-prizes")
async def distribute_prizes(
    payload: DistributePrizes,
    current_admin: str = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    results = campaign_service.distribute_prizes(
        db, payload.campaign_id, payload.first_winner_id, payload.second_winner_id
    )
    await ws_manager.prizes_distributed(results, current_admin)
    return {"success": True, "message": "Prizes distributed successfully", "results": results}


@app.put("/api/campaigns/admin/submission/{submission_id}/rate")
async def rate_submission(
    submission_id: int,
    payload: SubmissionRate,
    current_admin: str = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    submission = campaign_service.rate_submission(
        db, submission_id, payload.rating, payload.notes, payload.prize_position
    )
    data = serialize_submission(submission)
    await ws_manager.submission_rated(data, current_admin)
    if payload.prize_position:
        message = f"Submission marked as {payload.prize_position} prize winner"
    else:
        message = "Submission rated successfully"
    return {"success": True, "message": message, "submission": data}


@app.get("/api/campaigns/admin/{campaign_id}")
async def get_campaign(
    campaign_id: int,
    current_admin: str = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    campaign = campaign_service.get_campaign(db, campaign_id)
    submissions = db.query(Submission).filter(Submission.campaign_id == campaign_id).order_by(
        desc(Submission.admin_rating), Submission.id
    ).all()
    return {
        "success": True,
        "campaign": serialize_campaign(campaign, len(submissions)),
        "submissions": [serialize_submission(s) for s in submissions],
    }


@app.put("/api/campaigns/admin/{campaign_id}")
async def update_campaign(
    campaign_id: int,
    payload: CampaignUpdate,
    current_admin: str = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    campaign = campaign_service.update_campaign(db, campaign_id, payload.model_dump(exclude_unset=True))
    return {
        "success": True,
        "message": "Campaign updated successfully",
        "campaign": serialize_campaign(campaign),
    }


@app.patch("/api/campaigns/admin/{campaign_id}/status")
async def change_campaign_status(
    campaign_id: int,
    payload: StatusChange,
    current_admin: str = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    results = campaign_service.change_status(db, campaign_id, payload.status)
    campaign = campaign_service.get_campaign(db, campaign_id)
    await ws_manager.campaign_status_changed(campaign_id, campaign.status, current_admin)
    response = {
        "success": True,
        "message": f"Campaign status updated to {campaign.status}",
        "campaign": serialize_campaign(campaign),
    }
    if results is not None:
        response["results"] = results
    return response


@app.delete("/api/campaigns/admin/{campaign_id}")
async def delete_campaign(
    campaign_id: int,
    current_admin: str = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    campaign_service.delete_campaign(db, campaign_id)
    return {"success": True, "message": "Campaign deleted successfully"}


@app.get("/api/campaigns/admin/{campaign_id}/submissions/export")
async def export_campaign_submissions(
    campaign_id: int,
    format: str = Query("csv", pattern="^(csv|excel)$"),
    current_admin: str = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """Export a campaign's submissions as CSV or Excel."""
    campaign = campaign_service.get_campaign(db, campaign_id)
    rows = []
    for sub in campaign.submissions:
        rows.append({
            "Submission ID": sub.id,
            "Username": sub.user.username or "",
            "Mobile": sub.user.mobile_number,
            "Title": sub.title or "",
            "Likes": sub.likes,
            "Votes": sub.votes,
            "Admin Rating": sub.admin_rating,
            "Status": sub.status,
            "Prize Won": sub.prize_amount or 0,
            "Submitted At": sub.created_at.strftime("%Y-%m-%d %H:%M:%S") if sub.created_at else "",
        })
    return _export(rows, f"campaign_{campaign_id}_submissions", format)


# End-user campaign endpoints
@app.get("/api/campaigns/{campaign_id}/participants")
async def list_participants(campaign_id: int, db: Session = Depends(get_db)):
    campaign_service.get_campaign(db, campaign_id)
    submissions = db.query(Submission).filter(Submission.campaign_id == campaign_id).order_by(Submission.id).all()
    return {"success": True, "participants": [serialize_submission(s) for s in submissions]}


@app.post("/api/campaigns/{campaign_id}/submissions", status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def enter_submission(
    request: Request,
    campaign_id: int,
    payload: SubmissionCreate,
    db: Session = Depends(get_db)
):
    submission = campaign_service.enter_submission(
        db, campaign_id, payload.user_id, payload.submission_image, payload.title, payload.description
    )
    return {"success": True, "message": "Submission received", "submission": serialize_submission(submission)}


# Users
@app.get("/api/users")
async def list_users(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    current_admin: str = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    users = db.query(User).order_by(desc(User.created_at), desc(User.id)).offset(skip).limit(limit).all()
    return {"success": True, "count": len(users), "users": [serialize_user(u) for u in users]}


@app.get("/api/users/search")
async def search_users(
    q: str = Query(..., min_length=2),
    limit: int = Query(20, ge=1, le=100),
    current_admin: str = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    term = f"%{q.strip()}%"
    users = db.query(User).filter(
        or_(User.mobile_number.like(term), User.username.ilike(term))
    ).order_by(User.id).limit(limit).all()
    return {"success": True, "users": [serialize_user(u) for u in users]}


@app.get("/api/users/{user_id}")
async def get_user(
    user_id: int,
    include_submissions: bool = Query(False),
    current_admin: str = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    response = {"success": True, "user": serialize_user(user)}
    if include_submissions:
        submissions = db.query(Submission).filter(Submission.user_id == user_id).order_by(
            desc(Submission.created_at)
        ).all()
        response["submissions"] = [
            {**serialize_submission(s), "campaign": {"id": s.campaign.id, "name": s.campaign.name}}
            for s in submissions
        ]
    return response


# Withdrawals
@app.get("/api/withdrawals/admin/all")
async def list_withdrawals(
    status_filter: Optional[str] = Query(None, alias="status"),
    current_admin: str = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    query = db.query(Withdrawal)
    if status_filter and status_filter != "all":
        query = query.filter(Withdrawal.status == status_filter)
    withdrawals = query.order_by(desc(Withdrawal.requested_at), desc(Withdrawal.id)).all()
    return {"success": True, "count": len(withdrawals), "withdrawals": [serialize_withdrawal(w) for w in withdrawals]}


@app.get("/api/withdrawals/admin/export")
async def export_withdrawals(
    format: str = Query("csv", pattern="^(csv|excel)$"),
    status_filter: Optional[str] = Query(None, alias="status"),
    current_admin: str = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """Export withdrawals as CSV or Excel."""
    query = db.query(Withdrawal)
    if status_filter and status_filter != "all":
        query = query.filter(Withdrawal.status == status_filter)

    rows = []
    for w in query.order_by(desc(Withdrawal.requested_at)).all():
        rows.append({
            "Withdrawal ID": w.id,
            "Username": w.user.username or "",
            "Mobile": w.user.mobile_number,
            "Amount": w.amount,
            "Method": w.method,
            "UPI ID": w.upi_id or "",
            "Account Holder": w.account_holder_name or "",
            "Account Number": w.account_number or "",
            "IFSC": w.ifsc_code or "",
            "Bank": w.bank_name or "",
            "Status": w.status,
            "Admin Notes": w.admin_notes or "",
            "Rejection Reason": w.rejection_reason or "",
            "Requested At": w.requested_at.strftime("%Y-%m-%d %H:%M:%S") if w.requested_at else "",
            "Processed At": w.processed_at.strftime("%Y-%m-%d %H:%M:%S") if w.processed_at else "",
        })
    return _export(rows, "withdrawals", format)


@app.put("/api/withdrawals/admin/{withdrawal_id}/process")
async def process_withdrawal(
    withdrawal_id: int,
    payload: WithdrawalProcess,
    current_admin: str = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    withdrawal = withdrawal_service.process_withdrawal(
        db, withdrawal_id, payload.status, current_admin, payload.admin_notes, payload.rejection_reason
    )
    data = serialize_withdrawal(withdrawal)
    await ws_manager.withdrawal_processed(data)
    verb = "approved" if withdrawal.status == "completed" else "rejected"
    return {"success": True, "message": f"Withdrawal {verb} successfully", "withdrawal": data}


@app.post("/api/withdrawals/request", status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def request_withdrawal(request: Request, payload: WithdrawalRequest, db: Session = Depends(get_db)):
    bank_details = payload.details.bank_details.model_dump() if payload.details.bank_details else None
    withdrawal = withdrawal_service.request_withdrawal(
        db, payload.user_id, payload.amount, payload.method, payload.details.upi_id, bank_details
    )
    data = serialize_withdrawal(withdrawal)
    await ws_manager.withdrawal_requested(data)
    return {"success": True, "message": "Withdrawal request submitted", "withdrawal": data}


@app.post("/api/withdrawals/{withdrawal_id}/cancel")
async def cancel_withdrawal(withdrawal_id: int, payload: WithdrawalCancel, db: Session = Depends(get_db)):
    withdrawal = withdrawal_service.cancel_withdrawal(db, withdrawal_id, payload.user_id)
    return {"success": True, "message": "Withdrawal cancelled", "withdrawal": serialize_withdrawal(withdrawal)}


# Coupons
def _resolve_campaigns(db: Session, campaign_ids: list) -> list:
    if not campaign_ids:
        return []
    campaigns = db.query(Campaign).filter(Campaign.id.in_(campaign_ids)).all()
    if len(campaigns) != len(set(campaign_ids)):
        raise ValidationFailed("One or more applicable campaigns do not exist")
    return campaigns


def _get_coupon(db: Session, coupon_id: int) -> Coupon:
    coupon = db.query(Coupon).filter(Coupon.id == coupon_id).first()
    if not coupon:
        raise NotFoundError("Coupon not found")
    return coupon


def _apply_coupon_fields(db: Session, coupon: Coupon, payload: CouponCreate):
    duplicate = db.query(Coupon.id).filter(Coupon.code == payload.code, Coupon.id != (coupon.id or 0)).first()
    if duplicate:
        raise ConflictError(f"Coupon code {payload.code} already exists")
    coupon.code = payload.code
    coupon.description = payload.description or ""
    coupon.discount_type = payload.discount_type
    coupon.discount_value = payload.discount_value
    coupon.min_purchase_amount = payload.min_purchase_amount
    coupon.max_discount_amount = payload.max_discount_amount
    coupon.expiry_date = payload.expiry_date
    coupon.usage_limit = payload.usage_limit
    coupon.applicable_campaigns = _resolve_campaigns(db, payload.applicable_campaigns)
    if payload.is_active is not None:
        coupon.is_active = payload.is_active


@app.get("/api/coupons")
async def list_coupons(current_admin: str = Depends(get_current_admin), db: Session = Depends(get_db)):
    coupons = db.query(Coupon).order_by(desc(Coupon.created_at), desc(Coupon.id)).all()
    return {"success": True, "coupons": [serialize_coupon(c) for c in coupons]}


@app.post("/api/coupons", status_code=status.HTTP_201_CREATED)
async def create_coupon(
    payload: CouponCreate,
    current_admin: str = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    coupon = Coupon(used_count=0, is_active=True)
    _apply_coupon_fields(db, coupon, payload)
    db.add(coupon)
    db.commit()
    db.refresh(coupon)
    logger.info(f"Coupon {coupon.code} created by {current_admin}")
    return {"success": True, "message": "Coupon created successfully", "coupon": serialize_coupon(coupon)}


@app.post("/api/coupons/validate")
@limiter.limit("30/minute")
async def validate_coupon(request: Request, payload: CouponRedeem, db: Session = Depends(get_db)):
    coupon = db.query(Coupon).filter(Coupon.code == payload.code).first()
    if not coupon:
        raise NotFoundError("Invalid coupon code")
    discount = check_redeemable(coupon, payload.amount, payload.campaign_id)
    return {
        "success": True,
        "code": coupon.code,
        "discount": discount,
        "final_amount": round(payload.amount - discount, 2),
    }


@app.post("/api/coupons/apply")
@limiter.limit("30/minute")
async def apply_coupon(request: Request, payload: CouponRedeem, db: Session = Depends(get_db)):
    coupon = db.query(Coupon).filter(Coupon.code == payload.code).first()
    if not coupon:
        raise NotFoundError("Invalid coupon code")
    discount = check_redeemable(coupon, payload.amount, payload.campaign_id)

    conditions = [Coupon.id == coupon.id, Coupon.is_active.is_(True)]
    if coupon.usage_limit is not None:
        conditions.append(Coupon.used_count < Coupon.usage_limit)
    redeemed = db.query(Coupon).filter(*conditions).update(
        {Coupon.used_count: Coupon.used_count + 1}, synchronize_session=False
    )
    if not redeemed:
        db.rollback()
        raise ConflictError("This coupon has reached its usage limit")
    db.commit()
    logger.info(f"Coupon {coupon.code} redeemed for ₹{discount}")
    return {
        "success": True,
        "code": coupon.code,
        "discount": discount,
        "final_amount": round(payload.amount - discount, 2),
    }


@app.get("/api/coupons/{coupon_id}")
async def get_coupon(coupon_id: int, current_admin: str = Depends(get_current_admin), db: Session = Depends(get_db)):
    return {"success": True, "coupon": serialize_coupon(_get_coupon(db, coupon_id))}


@app.put("/api/coupons/{coupon_id}")
async def update_coupon(
    coupon_id: int,
    payload: CouponCreate,
    current_admin: str = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    coupon = _get_coupon(db, coupon_id)
    _apply_coupon_fields(db, coupon, payload)
    db.commit()
    db.refresh(coupon)
    return {"success": True, "message": "Coupon updated successfully", "coupon": serialize_coupon(coupon)}


@app.delete("/api/coupons/{coupon_id}")
async def delete_coupon(coupon_id: int, current_admin: str = Depends(get_current_admin), db: Session = Depends(get_db)):
    coupon = _get_coupon(db, coupon_id)
    db.delete(coupon)
    db.commit()
    logger.info(f"Coupon {coupon_id} deleted by {current_admin}")
    return {"success": True, "message": "Coupon deleted successfully"}


@app.patch("/api/coupons/{coupon_id}/toggle-status")
async def toggle_coupon_status(
    coupon_id: int,
    current_admin: str = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    coupon = _get_coupon(db, coupon_id)
    coupon.is_active = not coupon.is_active
    db.commit()
    db.refresh(coupon)
    return {
        "success": True,
        "message": f"Coupon {'activated' if coupon.is_active else 'deactivated'} successfully",
        "coupon": serialize_coupon(coupon),
    }


# Image upload
@app.post("/api/upload")
@app.post("/api/upload/image")
async def upload_image(
    image: UploadFile = File(...),
    current_admin: str = Depends(get_current_admin)
):
    relative_path = await save_upload_file_securely(image)
    return {"success": True, "imageUrl": public_url(relative_path), "path": relative_path}


# Push notifications
@app.post("/api/push/subscribe", status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def subscribe_push(request: Request, payload: PushSubscribe, db: Session = Depends(get_db)):
    subscription = push_service.subscribe(
        db, payload.endpoint, payload.keys.p256dh, payload.keys.auth, payload.user_id
    )
    return {"success": True, "message": "Subscribed to notifications", "id": subscription.id}


@app.get("/api/push/stats")
def push_stats(current_admin: str = Depends(get_current_admin), db: Session = Depends(get_db)):
    return {"success": True, **push_service.subscription_stats(db)}


def _push_response(outcome: dict, audience: str) -> dict:
    return {
        "success": True,
        "message": f"Notification sent to {outcome['sent']} {audience} ({outcome['failed']} failed)",
        **outcome,
    }


@app.post("/api/push/broadcast")
def push_broadcast(
    payload: PushMessage,
    current_admin: str = Depends(get_current_admin),
    db: Session = Depends(get_db),
    dispatcher: push_service.PushDispatcher = Depends(get_push_dispatcher)
):
    outcome = dispatcher.dispatch(db, push_service.all_subscriptions(db), payload.model_dump())
    logger.info(f"Broadcast by {current_admin}: sent={outcome['sent']} failed={outcome['failed']}")
    return _push_response(outcome, "subscribers")


@app.post("/api/push/send-to-user")
def push_to_user(
    payload: PushToUser,
    current_admin: str = Depends(get_current_admin),
    db: Session = Depends(get_db),
    dispatcher: push_service.PushDispatcher = Depends(get_push_dispatcher)
):
    subscriptions = push_service.user_subscriptions(db, payload.user_id)
    outcome = dispatcher.dispatch(db, subscriptions, payload.model_dump())
    return _push_response(outcome, "devices")


@app.post("/api/push/send-to-campaign-participants")
def push_to_campaign(
    payload: PushToCampaign,
    current_admin: str = Depends(get_current_admin),
    db: Session = Depends(get_db),
    dispatcher: push_service.PushDispatcher = Depends(get_push_dispatcher)
):
    subscriptions = push_service.campaign_subscriptions(db, payload.campaign_id)
    outcome = dispatcher.dispatch(db, subscriptions, payload.model_dump())
    return _push_response(outcome, "participant devices")


# WebSocket endpoint for real-time updates
@app.websocket("/ws/admin")
async def websocket_endpoint(websocket: WebSocket, token: str = Query(...)):
    """
    Live admin feed. Requires JWT token authentication via query parameter.

    Usage: ws://localhost:3033/ws/admin?token=<jwt_token>
    """
    admin_username = verify_token(token)
    if not admin_username:
        await websocket.close(code=1008, reason="Invalid authentication token")
        return

    db = SessionLocal()
    try:
        admin = db.query(Admin).filter(Admin.username == admin_username).first()
        active = bool(admin and admin.is_active)
    finally:
        db.close()
    if not active:
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

            if not isinstance(message, dict):
                continue

            if message.get("type") == "ping":
                await websocket.send_json({"type": "pong", "timestamp": datetime.now().isoformat()})
            elif message.get("type") == "request_stats":
                db = SessionLocal()
                try:
                    stats = campaign_service.dashboard_stats(db)
                finally:
                    db.close()
                await ws_manager.send_personal_message({
                    "type": "stats_update",
                    "data": stats,
                    "timestamp": datetime.now().isoformat()
                }, websocket)
    except WebSocketDisconnect:
        pass
    finally:
        ws_manager.disconnect(websocket, admin_username)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow(),
        "websocket_connections": ws_manager.get_connection_count(),
        "connected_admins": ws_manager.get_connected_admins()
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=3033)
