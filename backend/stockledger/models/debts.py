from __future__ import annotations

from ..extensions import db
from .inventory import new_id


class Debt(db.Model):
    """
    Money owed by a client.

    debtor_name is matched case-sensitively against Client.name.
    amount_cents only moves down (partial payments) and never below zero.
    seq records insertion order; FIFO settlement uses it to break ties
    between debts due on the same date.
    """
    __tablename__ = "debts"
    __table_args__ = (
        db.Index("ix_debts_debtor_paid", "debtor_name", "is_paid"),
    )

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    seq = db.Column(db.Integer, nullable=False, index=True)

    debtor_name = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)
    due_date = db.Column(db.Date, nullable=False)
    is_paid = db.Column(db.Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Debt id={self.id} debtor={self.debtor_name!r} amount_cents={self.amount_cents} paid={self.is_paid}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seq": self.seq,
            "debtor_name": self.debtor_name,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "is_paid": self.is_paid,
        }


class Client(db.Model):
    """
    Known debtor name, used for autocomplete and existence checks.

    Removing a debt never removes its client; only an explicit client
    delete does (and that cascades to the client's debts).
    """
    __tablename__ = "clients"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True)

    def __repr__(self) -> str:
        return f"<Client {self.name!r}>"
