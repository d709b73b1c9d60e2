# Overview: Read-only dashboard aggregates over the entity store.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Client, Debt, Product
from .settings_service import get_config


def list_low_stock_products() -> list[Product]:
    """Products at or below the configured threshold, emptiest first."""
    threshold = get_config().low_stock_threshold
    return (
        db.session.query(Product)
        .filter(Product.quantity <= threshold)
        .order_by(Product.quantity.asc(), Product.name.asc())
        .all()
    )


def get_client_balances() -> list[dict]:
    """
    Outstanding balance per client, largest first.

    Clients whose debts are all paid appear with a zero balance.
    """
    open_rows = dict(
        (name, (total, count))
        for name, total, count in db.session.query(
            Debt.debtor_name,
            func.coalesce(func.sum(Debt.amount_cents), 0),
            func.count(Debt.id),
        )
        .filter(Debt.is_paid.is_(False))
        .group_by(Debt.debtor_name)
        .all()
    )

    names = [c.name for c in db.session.query(Client).order_by(Client.id.asc()).all()]
    # debts can outlive a client row when restored from an older backup
    names += [n for n in open_rows if n not in names]

    balances = []
    for name in names:
        total, count = open_rows.get(name, (0, 0))
        balances.append({
            "client_name": name,
            "outstanding_cents": int(total),
            "open_debts": int(count),
        })
    balances.sort(key=lambda b: (-b["outstanding_cents"], b["client_name"]))
    return balances


def get_dashboard_summary() -> dict:
    cfg = get_config()

    stock_value = db.session.query(
        func.coalesce(func.sum(Product.price_cents * Product.quantity), 0)
    ).scalar()
    outstanding = db.session.query(
        func.coalesce(func.sum(Debt.amount_cents), 0)
    ).filter(Debt.is_paid.is_(False)).scalar()
    product_count = db.session.query(func.count(Product.id)).scalar()
    low_stock_count = (
        db.session.query(func.count(Product.id))
        .filter(Product.quantity <= cfg.low_stock_threshold)
        .scalar()
    )
    clients_with_debt = (
        db.session.query(func.count(func.distinct(Debt.debtor_name)))
        .filter(Debt.is_paid.is_(False), Debt.amount_cents > 0)
        .scalar()
    )

    return {
        "shop_name": cfg.shop_name,
        "currency_symbol": cfg.currency_symbol,
        "product_count": int(product_count or 0),
        "total_stock_value_cents": int(stock_value or 0),
        "total_outstanding_debt_cents": int(outstanding or 0),
        "low_stock_count": int(low_stock_count or 0) if cfg.enable_low_stock_warning else 0,
        "low_stock_threshold": cfg.low_stock_threshold,
        "clients_with_debt": int(clients_with_debt or 0),
    }
