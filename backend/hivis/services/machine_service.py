# Overview: Vending machine registry; fleet listing and online status.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Machine
from ..validation import ConflictError, ValidationError
from hivis.time_utils import utcnow


class MachineNotFoundError(Exception):
    pass


def _clean(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def list_machines() -> list[Machine]:
    return db.session.query(Machine).order_by(Machine.name.asc(), Machine.id.asc()).all()


def register_machine(machine_id: str, name: str, location: str, *, now: datetime | None = None) -> Machine:
    """
    Add a machine to the fleet; it starts online.

    Raises:
        ValidationError: missing id, name or location
        ConflictError: machine id already registered
    """
    machine_id = _clean(machine_id)
    name = _clean(name)
    location = _clean(location)
    if not machine_id or not name or not location:
        raise ValidationError("machineId, name and location are required")
    if db.session.get(Machine, machine_id):
        raise ConflictError(f"Machine {machine_id} already registered")

    machine = Machine(id=machine_id, name=name, location=location, is_online=True, last_ping=now or utcnow())
    db.session.add(machine)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Machine {machine_id} already registered")

    current_app.logger.info("Registered machine %s (%s) at %s", machine_id, name, location)
    return machine


def update_status(machine_id: str, is_online: bool, *, now: datetime | None = None) -> Machine:
    """
    Record a status report: sets is_online and stamps last_ping.

    Raises:
        ValidationError: is_online is not a boolean
        MachineNotFoundError: unknown machine
    """
    if not isinstance(is_online, bool):
        raise ValidationError("isOnline must be a boolean")
    machine = db.session.get(Machine, machine_id)
    if not machine:
        raise MachineNotFoundError(f"Machine {machine_id} not found")

    was_online = machine.is_online
    machine.is_online = is_online
    machine.last_ping = now or utcnow()
    db.session.commit()

    if was_online != is_online:
        current_app.logger.info("Machine %s is now %s", machine_id, "online" if is_online else "offline")
    return machine
