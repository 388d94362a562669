from datetime import date
from decimal import Decimal
from typing import Union


def format_date(d: date) -> str:
    """Format date as DD.MM.YYYY"""
    return d.strftime("%d.%m.%Y")


def format_money(amount: Union[Decimal, float, int]) -> str:
    """Whole-unit amount with thousands separators: 1,100,000"""
    return f"{Decimal(amount):,.0f}"


def format_period(month: int, year: int) -> str:
    return f"{month:02d}/{year}"
