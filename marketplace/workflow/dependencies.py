import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from marketplace.workflow.store import WorkflowStore

logger = logging.getLogger(__name__)


def get_workflow_store(request: Request) -> WorkflowStore:
    """Dépendance FastAPI: le WorkflowStore créé au démarrage de l'application."""
    store = getattr(request.app.state, "workflow_store", None)
    if store is None:
        logger.error("Le WorkflowStore n'est pas initialisé.")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service en cours de démarrage.")
    return store


WorkflowStoreDep = Annotated[WorkflowStore, Depends(get_workflow_store)]
