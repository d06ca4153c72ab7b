"""
Sauvegarde locale de l'état du workflow en mode MOCK.

Le fichier JSON contient deux clés: l'instantané complet sous STORAGE_KEY et le
mode qui l'a produit sous MODE_KEY. Un instantané écrit dans un autre mode, ou
illisible, est ignoré au chargement.
"""
import json
import logging
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from marketplace.exceptions import GatewayException
from marketplace.workflow.models import WorkflowSnapshot

logger = logging.getLogger(__name__)

STORAGE_KEY = "mwrd-storage"
MODE_KEY = "mwrd-app-mode"


class SnapshotStorage:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            content = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"[SnapshotStorage] Fichier {self.path} illisible, ignoré: {e}")
            return {}
        if not isinstance(content, dict):
            logger.warning(f"[SnapshotStorage] Contenu inattendu dans {self.path}, ignoré.")
            return {}
        return content

    def _write(self, content: dict) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(content, indent=2), encoding="utf-8")
        except OSError as e:
            logger.error(f"[SnapshotStorage] Écriture impossible dans {self.path}: {e}", exc_info=True)
            raise GatewayException("save_snapshot", str(e)) from e

    def load(self, mode: str) -> Optional[WorkflowSnapshot]:
        """Instantané sauvegardé pour `mode`, ou None.

        Si le marqueur de mode diffère, l'instantané est supprimé et le marqueur réécrit.
        """
        content = self._read()
        stored_mode = content.get(MODE_KEY)
        if stored_mode != mode:
            if stored_mode is not None or STORAGE_KEY in content:
                logger.info(f"[SnapshotStorage] Changement de mode ({stored_mode} -> {mode}), instantané local supprimé.")
            self._write({MODE_KEY: mode})
            return None

        raw = content.get(STORAGE_KEY)
        if raw is None:
            return None
        try:
            snapshot = WorkflowSnapshot.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"[SnapshotStorage] Instantané corrompu, ignoré: {e.error_count()} erreur(s).")
            self._write({MODE_KEY: mode})
            return None
        logger.info(f"[SnapshotStorage] Instantané restauré depuis {self.path} ({len(snapshot.quotes)} devis).")
        return snapshot

    def save(self, mode: str, snapshot: WorkflowSnapshot) -> None:
        self._write({
            MODE_KEY: mode,
            STORAGE_KEY: snapshot.model_dump(mode="json", by_alias=True),
        })
        logger.debug(f"[SnapshotStorage] Instantané sauvegardé dans {self.path}.")

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise GatewayException("clear_snapshot", str(e)) from e
        logger.info(f"[SnapshotStorage] Instantané local {self.path} supprimé.")
