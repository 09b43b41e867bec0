from pydantic import BaseModel, Field


# --- Expenses ---

class SplitIn(BaseModel):
    user_id: str
    amount: int | None = None  # cents; required for exact splits
    percentage: float | None = None
    shares: int | None = None


class ExpenseIn(BaseModel):
    description: str = Field(max_length=255)
    category: str | None = Field(default=None, max_length=50)
    amount: int
    paid_by: str
    date: str
    split_type: str = "equal"
    splits: list[SplitIn]
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    notes: str | None = None
    receipt_url: str | None = Field(default=None, max_length=500)


# --- Settlements ---

class SettlementIn(BaseModel):
    from_user: str = Field(alias="from")
    to: str
    amount: int
    date: str
    payment_method: str = "zelle"
    notes: str | None = None

    model_config = {"populate_by_name": True}


# --- Interest settings ---

class InterestSettingsIn(BaseModel):
    enable_interest: bool
    interest_rate: float | None = None
    interest_start_months: int | None = None
    currency: str = "USD"
