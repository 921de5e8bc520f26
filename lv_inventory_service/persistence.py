import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from . import models
from .schemas import ProcoreSession

logger = logging.getLogger(__name__)


def read_snapshot(db: Session, project_id: str) -> Optional[List[Dict[str, Any]]]:
    """Get the locally stored records of a project, None if never saved"""
    snapshot = db.query(models.InventorySnapshot).filter(
        models.InventorySnapshot.project_id == project_id
    ).first()
    if snapshot is None:
        return None
    return list(snapshot.items)


def write_snapshot(db: Session, project_id: str, items: List[Dict[str, Any]]) -> None:
    """Replace the locally stored records of a project"""
    snapshot = db.query(models.InventorySnapshot).filter(
        models.InventorySnapshot.project_id == project_id
    ).first()

    if snapshot:
        snapshot.items = items
    else:
        snapshot = models.InventorySnapshot(project_id=project_id, items=items)
        db.add(snapshot)

    db.commit()
    logger.info(f"Stored {len(items)} items locally for project {project_id}")


def load_session(db: Session, session_key: str) -> ProcoreSession:
    """Load stored Procore tokens; an empty session if there are none"""
    token = db.query(models.ProcoreToken).filter(
        models.ProcoreToken.session_key == session_key
    ).first()
    if token is None:
        return ProcoreSession()
    return ProcoreSession.model_validate(token)


def save_session(db: Session, session_key: str, session: ProcoreSession) -> None:
    token = db.query(models.ProcoreToken).filter(
        models.ProcoreToken.session_key == session_key
    ).first()

    if token is None:
        token = models.ProcoreToken(session_key=session_key)
        db.add(token)

    token.access_token = session.access_token
    token.refresh_token = session.refresh_token
    token.expires_at = session.expires_at
    db.commit()
    logger.info(f"Saved Procore session '{session_key}'")
