"""API endpoints for loyalty balances, earning, redemptions, and history."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.api.dependencies.security import require_admin_api_key
from loyalty_ledger.api.dependencies.tenant import optional_tenant_id
from loyalty_ledger.core.settings import settings
from loyalty_ledger.db.session import get_session
from loyalty_ledger.models.loyalty import TransactionCategory
from loyalty_ledger.observability.ledger import get_ledger_store
from loyalty_ledger.services.loyalty import (
    AccountSummary,
    LoyaltyLedgerService,
    TierTable,
    TransactionFilter,
    TransactionItem,
)
from loyalty_ledger.services.loyalty.history import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE


router = APIRouter(prefix="/loyalty", tags=["loyalty"])


class CustomerSummaryResponse(BaseModel):
    id: UUID
    name: str
    email: str


class LoyaltyAccountResponse(BaseModel):
    customerId: UUID
    accountId: UUID
    customer: Optional[CustomerSummaryResponse]
    pointsBalance: int
    lifetimePoints: int
    tier: str
    tierMultiplier: float
    nextTier: Optional[str]
    pointsToNextTier: Optional[int]
    progressToNextTier: float
    benefits: List[str]


class EarnPointsRequest(BaseModel):
    customerId: UUID
    orderId: str = Field(..., min_length=1, max_length=64)
    orderSubtotal: Decimal = Field(..., description="Order subtotal in currency units")
    description: Optional[str] = Field(None, max_length=500)


class EarnPointsResponse(BaseModel):
    customerId: UUID
    orderId: str
    pointsEarned: int
    newBalance: int
    tier: str
    tierMultiplier: float
    ledgerEntryId: Optional[UUID]
    duplicate: bool


class RedeemPointsRequest(BaseModel):
    customerId: UUID
    pointsToRedeem: int
    notes: Optional[str] = Field(None, max_length=500)


class VoucherIssuedResponse(BaseModel):
    voucherId: UUID
    voucherCode: str
    voucherValue: float
    minSpend: Optional[float]
    validFrom: datetime
    validUntil: datetime


class RedeemPointsResponse(BaseModel):
    customerId: UUID
    pointsRedeemed: int
    voucherIssued: VoucherIssuedResponse
    newPointsBalance: int
    ledgerEntryId: UUID


class AdjustPointsRequest(BaseModel):
    customerId: UUID
    points: int = Field(..., description="Positive or negative correction")
    reason: str = Field(..., max_length=500)
    adjustedBy: Optional[str] = Field(None, max_length=64)


class AdjustPointsResponse(BaseModel):
    customerId: UUID
    pointsAdjusted: int
    newBalance: int
    lifetimePoints: int
    tier: str
    adjustedBy: str
    ledgerEntryId: UUID


class BirthdayBonusRequest(BaseModel):
    customerId: UUID
    bonusPoints: Optional[int] = Field(None, description="Defaults to the configured bonus")
    notes: Optional[str] = Field(None, max_length=500)
    awardDate: Optional[date] = Field(None, description="Date of the award; defaults to today")


class BirthdayBonusResponse(BaseModel):
    customerId: UUID
    pointsAwarded: int
    newBalance: int
    ledgerEntryId: UUID
    duplicate: bool


class TransactionResponse(BaseModel):
    id: UUID
    loyaltyAccountId: UUID
    customerId: UUID
    sequence: int
    transactionType: str
    points: int
    balanceAfter: int
    referenceType: str
    referenceId: str
    description: str
    createdAt: datetime


class TransactionPageResponse(BaseModel):
    items: List[TransactionResponse]
    total: int
    limit: int
    offset: int
    hasMore: bool


class CatalogItemResponse(BaseModel):
    id: str
    name: str
    description: str
    pointsCost: int
    voucherValue: float
    voucherType: str
    minSpend: Optional[float]
    validityDays: int
    isAvailable: bool


class RedemptionSuggestionResponse(BaseModel):
    points: int
    voucherValue: float


class RedemptionCatalogResponse(BaseModel):
    items: List[CatalogItemResponse]
    customerPointsBalance: Optional[int]
    suggestions: List[RedemptionSuggestionResponse]


class LoyaltyTierResponse(BaseModel):
    name: str
    pointThreshold: int
    multiplier: float
    benefits: List[str]


@router.get("/accounts/{customer_id}", response_model=LoyaltyAccountResponse)
async def get_loyalty_account(
    customer_id: UUID,
    tenant_id: UUID | None = Depends(optional_tenant_id),
    db: AsyncSession = Depends(get_session),
) -> LoyaltyAccountResponse:
    """Return the derived balance and tier standing for a customer."""

    service = LoyaltyLedgerService(db)
    summary = await service.get_account(customer_id, tenant_id=tenant_id)
    return _serialize_account(summary)


@router.post("/earn", response_model=EarnPointsResponse)
async def earn_loyalty_points(
    payload: EarnPointsRequest,
    tenant_id: UUID | None = Depends(optional_tenant_id),
    db: AsyncSession = Depends(get_session),
) -> EarnPointsResponse:
    """Credit points for a completed order."""

    service = LoyaltyLedgerService(db)
    result = await service.earn(
        payload.customerId,
        payload.orderId,
        payload.orderSubtotal,
        description=payload.description,
        tenant_id=tenant_id,
    )
    return EarnPointsResponse(
        customerId=result.customer_id,
        orderId=result.order_id,
        pointsEarned=result.points_earned,
        newBalance=result.new_balance,
        tier=result.tier,
        tierMultiplier=float(result.tier_multiplier),
        ledgerEntryId=result.ledger_entry_id,
        duplicate=result.duplicate,
    )


@router.post("/redeem", response_model=RedeemPointsResponse, status_code=status.HTTP_201_CREATED)
async def redeem_loyalty_points(
    payload: RedeemPointsRequest,
    tenant_id: UUID | None = Depends(optional_tenant_id),
    db: AsyncSession = Depends(get_session),
) -> RedeemPointsResponse:
    """Exchange points for a fixed-value voucher."""

    service = LoyaltyLedgerService(db)
    result = await service.redeem(
        payload.customerId,
        payload.pointsToRedeem,
        notes=payload.notes,
        tenant_id=tenant_id,
    )
    voucher = result.voucher
    return RedeemPointsResponse(
        customerId=result.customer_id,
        pointsRedeemed=result.points_redeemed,
        voucherIssued=VoucherIssuedResponse(
            voucherId=voucher.id,
            voucherCode=voucher.code,
            voucherValue=float(voucher.value),
            minSpend=float(voucher.min_spend) if voucher.min_spend is not None else None,
            validFrom=voucher.valid_from,
            validUntil=voucher.valid_until,
        ),
        newPointsBalance=result.new_balance,
        ledgerEntryId=result.ledger_entry_id,
    )


@router.post(
    "/adjust",
    response_model=AdjustPointsResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def adjust_loyalty_points(
    payload: AdjustPointsRequest,
    tenant_id: UUID | None = Depends(optional_tenant_id),
    db: AsyncSession = Depends(get_session),
) -> AdjustPointsResponse:
    """Apply an operator correction to a customer's balance."""

    service = LoyaltyLedgerService(db)
    result = await service.adjust(
        payload.customerId,
        payload.points,
        payload.reason,
        adjusted_by=payload.adjustedBy,
        tenant_id=tenant_id,
    )
    return AdjustPointsResponse(
        customerId=result.customer_id,
        pointsAdjusted=result.points_delta,
        newBalance=result.new_balance,
        lifetimePoints=result.lifetime_earned,
        tier=result.tier,
        adjustedBy=result.adjusted_by,
        ledgerEntryId=result.ledger_entry_id,
    )


@router.post("/birthday-bonus", response_model=BirthdayBonusResponse)
async def award_birthday_bonus(
    payload: BirthdayBonusRequest,
    tenant_id: UUID | None = Depends(optional_tenant_id),
    db: AsyncSession = Depends(get_session),
) -> BirthdayBonusResponse:
    service = LoyaltyLedgerService(db)
    result = await service.award_birthday_bonus(
        payload.customerId,
        bonus_points=payload.bonusPoints,
        notes=payload.notes,
        on=payload.awardDate,
        tenant_id=tenant_id,
    )
    return BirthdayBonusResponse(
        customerId=result.customer_id,
        pointsAwarded=result.points_awarded,
        newBalance=result.new_balance,
        ledgerEntryId=result.ledger_entry_id,
        duplicate=result.duplicate,
    )


@router.get("/transactions", response_model=TransactionPageResponse)
async def list_loyalty_transactions(
    customer_id: UUID | None = Query(None, alias="customerId", description="Limit to one customer"),
    category: TransactionCategory | None = Query(None, alias="type", description="Transaction category"),
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    order: Literal["asc", "desc"] = Query("desc"),
    tenant_id: UUID | None = Depends(optional_tenant_id),
    db: AsyncSession = Depends(get_session),
) -> TransactionPageResponse:
    """Return ledger entries with the running balance after each one.

    Without ``customerId`` the listing spans every account; running balances
    stay per account.
    """

    service = LoyaltyLedgerService(db)
    page = await service.list_transactions(
        TransactionFilter(
            customer_id=customer_id,
            category=category,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=offset,
            order=order,
        ),
        tenant_id=tenant_id,
    )
    return TransactionPageResponse(
        items=[_serialize_transaction(item) for item in page.items],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
        hasMore=page.has_more,
    )


@router.get("/catalog", response_model=RedemptionCatalogResponse)
async def get_redemption_catalog(
    customer_id: UUID | None = Query(None, alias="customerId"),
    tenant_id: UUID | None = Depends(optional_tenant_id),
    db: AsyncSession = Depends(get_session),
) -> RedemptionCatalogResponse:
    """List voucher options, flagging the ones the customer can afford."""

    service = LoyaltyLedgerService(db)
    catalog = await service.redemption_catalog(customer_id, tenant_id=tenant_id)
    return RedemptionCatalogResponse(
        items=[
            CatalogItemResponse(
                id=item.id,
                name=item.name,
                description=item.description,
                pointsCost=item.points_cost,
                voucherValue=float(item.voucher_value),
                voucherType=item.voucher_type,
                minSpend=float(item.min_spend) if item.min_spend is not None else None,
                validityDays=item.validity_days,
                isAvailable=item.is_available,
            )
            for item in catalog.items
        ],
        customerPointsBalance=catalog.balance,
        suggestions=[
            RedemptionSuggestionResponse(points=item.points, voucherValue=float(item.voucher_value))
            for item in catalog.suggestions
        ],
    )


@router.get("/tiers", response_model=List[LoyaltyTierResponse])
async def list_loyalty_tiers() -> List[LoyaltyTierResponse]:
    """List the configured tiers from lowest to highest."""

    table = TierTable.from_config(settings.loyalty_tiers)
    return [
        LoyaltyTierResponse(
            name=tier.name,
            pointThreshold=tier.threshold,
            multiplier=float(tier.multiplier),
            benefits=list(tier.benefits),
        )
        for tier in table.tiers
    ]


@router.get("/observability", dependencies=[Depends(require_admin_api_key)])
async def get_ledger_observability() -> dict[str, object]:
    """Expose operation outcome counters for dashboards."""

    return get_ledger_store().snapshot().as_dict()


def _serialize_account(summary: AccountSummary) -> LoyaltyAccountResponse:
    customer = summary.customer
    return LoyaltyAccountResponse(
        customerId=summary.customer_id,
        accountId=summary.account_id,
        customer=(
            CustomerSummaryResponse(id=customer.id, name=customer.name, email=customer.email)
            if customer is not None
            else None
        ),
        pointsBalance=summary.balance,
        lifetimePoints=summary.lifetime_earned,
        tier=summary.tier,
        tierMultiplier=float(summary.tier_multiplier),
        nextTier=summary.next_tier,
        pointsToNextTier=summary.points_to_next_tier,
        progressToNextTier=float(summary.progress_percent),
        benefits=list(summary.benefits),
    )


def _serialize_transaction(item: TransactionItem) -> TransactionResponse:
    return TransactionResponse(
        id=item.id,
        loyaltyAccountId=item.account_id,
        customerId=item.customer_id,
        sequence=item.sequence,
        transactionType=item.category.value,
        points=item.points_delta,
        balanceAfter=item.running_balance_after,
        referenceType=item.reference_type.value,
        referenceId=item.reference_id,
        description=item.reason,
        createdAt=item.created_at,
    )
