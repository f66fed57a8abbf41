from __future__ import annotations

from ..extensions import db
from hivis.time_utils import to_utc_z


class Machine(db.Model):
    """
    Vending machine in the fleet.

    The id is the operator's machine identifier, the same value intake
    events carry as machineId. Online status is reported by the machine
    (or an operator); last_ping records when it was last set.
    """
    __tablename__ = "machines"

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    location = db.Column(db.Text, nullable=False)
    is_online = db.Column(db.Boolean, nullable=False, default=True, index=True)
    last_ping = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "is_online": self.is_online,
            "last_ping": to_utc_z(self.last_ping),
            "created_at": to_utc_z(self.created_at),
        }
