"""Pydantic request/response schemas for type safety."""

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Literal

from models import TransactionFlow, TransactionType


# =============================================================================
# Payment accounts
# =============================================================================

class UpiAccountCreate(BaseModel):
    upi_id: str = Field(..., min_length=3)
    display_name: str = Field(..., min_length=1)


class CardAccountCreate(BaseModel):
    card_holder_name: str = Field(..., min_length=1)
    card_last4: str = Field(..., pattern=r"^\d{4}$")
    card_type: str = Field(..., min_length=1)


class BankAccountCreate(BaseModel):
    account_holder_name: str = Field(..., min_length=1)
    bank_name: str = Field(..., min_length=1)
    account_number_last4: str = Field(..., pattern=r"^\d{4}$")


class UpiAccountOut(BaseModel):
    id: str
    upi_id: str
    display_name: str

    class Config:
        from_attributes = True


class CardAccountOut(BaseModel):
    id: str
    card_holder_name: str
    card_last4: str
    card_type: str

    class Config:
        from_attributes = True


class BankAccountOut(BaseModel):
    id: str
    account_holder_name: str
    bank_name: str
    account_number_last4: str

    class Config:
        from_attributes = True


class AccountsResponse(BaseModel):
    upi_accounts: list[UpiAccountOut]
    card_accounts: list[CardAccountOut]
    bank_accounts: list[BankAccountOut]


# =============================================================================
# Transactions
# =============================================================================

class UpiDetailsIn(BaseModel):
    payee_name: str = Field(..., min_length=1)
    payee_upi_id: str = Field(..., min_length=3)


class CardDetailsIn(BaseModel):
    payee_merchant_name: str = Field(..., min_length=1)


class NetBankingDetailsIn(BaseModel):
    payee_name: str = Field(..., min_length=1)
    payee_bank_name: str = Field(..., min_length=1)
    reference_id: str = Field(..., min_length=1)


class TransactionCreate(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2, description="Positive amount")
    transaction_type: TransactionType
    flow: TransactionFlow = TransactionFlow.DEBIT
    payer_account_id: str
    timestamp: Optional[datetime] = Field(None, description="Defaults to server time")
    notes: Optional[str] = Field(None, max_length=500)
    upi_details: Optional[UpiDetailsIn] = None
    card_details: Optional[CardDetailsIn] = None
    net_banking_details: Optional[NetBankingDetailsIn] = None


class UpiDetailsOut(BaseModel):
    id: str
    payee_name: str
    payee_upi_id: str
    payer_upi_account_id: str

    class Config:
        from_attributes = True


class CardDetailsOut(BaseModel):
    id: str
    payee_merchant_name: str
    payer_card_account_id: str

    class Config:
        from_attributes = True


class NetBankingDetailsOut(BaseModel):
    id: str
    payee_name: str
    payee_bank_name: str
    reference_id: str
    payer_bank_account_id: str

    class Config:
        from_attributes = True


class TransactionOut(BaseModel):
    id: str
    amount: Decimal
    flow: TransactionFlow
    transaction_type: TransactionType
    timestamp: datetime
    category: Optional[str] = None
    category_source: Optional[str] = None
    category_confidence: Optional[float] = None
    notes: Optional[str] = None
    payer_account_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    upi_details: Optional[UpiDetailsOut] = None
    card_details: Optional[CardDetailsOut] = None
    net_banking_details: Optional[NetBankingDetailsOut] = None

    class Config:
        from_attributes = True


# =============================================================================
# Categorization
# =============================================================================

class CategoryUpdateRequest(BaseModel):
    category: str = Field(..., min_length=1, max_length=100)


class CategorySuggestionOut(BaseModel):
    category: str
    confidence: float = Field(ge=0, le=1)


# =============================================================================
# Analytics
# =============================================================================

FlowParam = Literal["DEBIT", "CREDIT", "NET"]
PeriodParam = Literal["month", "week"]
MethodParam = Literal["MOVING_AVERAGE", "LINEAR_TREND"]


class CategorySpendingOut(BaseModel):
    category: str
    total_amount: Decimal
    transaction_count: int
    percentage: int
    is_uncategorized: bool = False


class FlowSummaryOut(BaseModel):
    total_credit: Decimal
    total_debit: Decimal
    net_spending: Decimal
    transaction_count: int


class PeriodTotalOut(BaseModel):
    period: str
    start: date
    total: float


class AnalyticsInsightOut(BaseModel):
    forecasted_spending: list[float]
    periods_covered: int
    category_context: Optional[str] = None
    expenditure_tip: Optional[str] = None
    method: MethodParam
    period: PeriodParam
    low_confidence: bool
    history_periods: int


class HealthResponse(BaseModel):
    status: str
    database: str
    classifier: str
    text_generation: str
