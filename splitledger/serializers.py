from splitledger.models import Balance, Expense, ExpenseSplit, InterestSetting, Settlement


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def serialize_split(split: ExpenseSplit) -> dict:
    return {
        "userId": split.user_id,
        "amount": split.amount,
        "percentage": split.percentage,
        "shares": split.shares,
        "isPayer": split.is_payer,
    }


def serialize_expense(expense: Expense) -> dict:
    return {
        "id": expense.id,
        "projectId": expense.project_id,
        "description": expense.description,
        "category": expense.category,
        "amount": expense.amount,
        "currency": expense.currency,
        "paidBy": expense.paid_by,
        "date": expense.expense_date.isoformat(),
        "splitType": expense.split_type,
        "splits": [serialize_split(s) for s in expense.splits],
        "notes": expense.notes,
        "receiptUrl": expense.receipt_url,
        "createdAt": _iso(expense.created_at),
    }


def serialize_settlement(settlement: Settlement) -> dict:
    return {
        "id": settlement.id,
        "from": settlement.from_user_id,
        "to": settlement.to_user_id,
        "amount": settlement.amount,
        "principalAmount": settlement.principal_amount,
        "interestAmount": settlement.interest_amount,
        "currency": settlement.currency,
        "status": settlement.status,
        "paymentMethod": settlement.payment_method,
        "notes": settlement.notes,
        "date": settlement.settlement_date.isoformat(),
        "verifiedAt": _iso(settlement.verified_at),
        "createdBy": settlement.created_by,
    }


def serialize_balance(balance: Balance, interest: dict) -> dict:
    return {
        "id": balance.id,
        "from": balance.from_user_id,
        "to": balance.to_user_id,
        "amount": balance.amount,
        "baseAmount": balance.base_amount,
        "interestStartDate": _iso(balance.interest_start_date),
        "updatedAt": _iso(balance.updated_at),
        **interest,
    }


def serialize_settings(settings: InterestSetting | None) -> dict | None:
    if settings is None:
        return None
    return {
        "projectId": settings.project_id,
        "enableInterest": settings.enable_interest,
        "interestRate": settings.interest_rate,
        "interestStartMonths": settings.interest_start_months,
        "currency": settings.currency,
        "updatedAt": _iso(settings.updated_at),
    }
