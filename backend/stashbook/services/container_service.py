# Overview: Service-layer operations for stock containers.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Container
from ..validation import NotFoundError, ValidationError, require_text
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import container_has_movements


class ContainerInUse(Exception):
    """Raised when deleting a container that movements still reference."""
    pass


def create_container(name: str) -> Container:
    """Create a container; names are unique."""
    clean = require_text(name, "name", max_length=128)

    def _op():
        if db.session.query(Container).filter_by(name=clean).first():
            raise ValidationError(f"Container {clean!r} already exists")
        container = Container(name=clean)
        db.session.add(container)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ValidationError(f"Container {clean!r} already exists")
        return container

    return run_with_retry(_op)


def get_container(container_id: int) -> Container:
    container = db.session.get(Container, container_id)
    if container is None:
        raise NotFoundError(f"Container {container_id} not found")
    return container


def list_containers() -> list[Container]:
    return db.session.query(Container).order_by(Container.created_at, Container.id).all()


def ensure_default_container() -> Container:
    """
    Container that receives confirmed deposits (DEFAULT_CONTAINER_NAME).

    Safe to call repeatedly (idempotent). Flushes only.
    """
    name = current_app.config.get("DEFAULT_CONTAINER_NAME", "Baú Gerente")
    container = db.session.query(Container).filter_by(name=name).first()
    if container:
        return container

    container = Container(name=name)
    db.session.add(container)
    db.session.flush()
    return container


def delete_container(container_id: int) -> None:
    """
    Delete an empty container.

    Raises ContainerInUse when any movement references it. That needs an
    operator decision, so it is never retried.
    """
    def _op():
        container = lock_for_update(db.session.query(Container).filter_by(id=container_id)).first()
        if container is None:
            raise NotFoundError(f"Container {container_id} not found")
        if container_has_movements(container.id):
            raise ContainerInUse(
                f"Container {container.name!r} has movements in the ledger and cannot be deleted"
            )
        db.session.delete(container)
        db.session.commit()

    run_with_retry(_op)
