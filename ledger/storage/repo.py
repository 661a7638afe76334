from __future__ import annotations

import glob
import json
import logging
import shutil
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union
from uuid import uuid4

from pydantic import BaseModel

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
ChangeListener = Callable[[str, Record], None]


def _json_default(o: Any) -> Any:
    if isinstance(o, (date, datetime)):
        return o.isoformat()
    return str(o)


class JsonRepository:
    """
    Repo JSON générique avec clé primaire configurable.
    - Rotation de backups (backup_enabled, backup_keep)
    - N'écrit pas si le contenu ne change pas (réduction du bruit et des .bak)
    - Notifie les abonnés après chaque insert / update / delete
    - Lecture-modification-écriture sous verrou (précondition vérifiée au moment d'écrire)
    """

    def __init__(
        self,
        filepath: Union[str, Path],
        entity_name: str = "entity",
        key: str = "id",
        *,
        backup_enabled: bool = True,
        backup_keep: int = 5,
    ) -> None:
        self.filepath = Path(filepath)
        self.entity_name = entity_name
        self.key = key
        self._lock = threading.RLock()
        self._listeners: List[ChangeListener] = []
        self.backup_enabled = backup_enabled
        self.backup_keep = max(0, int(backup_keep))

        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        if not self.filepath.exists():
            self._write_raw([])

    # ---------------- I/O bas niveau ---------------- #

    def _read_raw(self) -> List[Record]:
        try:
            with self.filepath.open("r", encoding="utf-8") as f:
                data = json.load(f)
            return data if isinstance(data, list) else []
        except FileNotFoundError:
            return []
        except json.JSONDecodeError:
            # Fichier corrompu → sauvegarde et repart sur liste vide
            backup = self.filepath.with_suffix(".corrupt.json")
            logger.error("%s illisible, copie dans %s", self.filepath, backup)
            try:
                shutil.copy2(self.filepath, backup)
            except OSError as e:
                logger.warning("Copie du fichier corrompu impossible: %s", e)
            return []

    def _rotate_backups(self) -> None:
        if not self.backup_enabled or self.backup_keep <= 0:
            return
        pattern = str(self.filepath.with_suffix(".*.bak.json"))
        files = sorted(glob.glob(pattern))
        # garde les plus récents
        for old in files[: max(0, len(files) - self.backup_keep)]:
            Path(old).unlink(missing_ok=True)

    def _write_raw(self, data: Iterable[Mapping[str, Any]]) -> None:
        with self._lock:
            new_dump = json.dumps(list(data), ensure_ascii=False, indent=2, default=_json_default)

            if self.filepath.exists():
                if self.filepath.read_text(encoding="utf-8") == new_dump:
                    return
                if self.backup_enabled:
                    ts = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
                    shutil.copy2(self.filepath, self.filepath.with_suffix(f".{ts}.bak.json"))
                    self._rotate_backups()

            self.filepath.write_text(new_dump, encoding="utf-8")

    # ---------------- Notifications ---------------- #

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: str, record: Record) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, dict(record))
            except Exception:
                # un abonné défaillant ne doit pas annuler l'écriture déjà faite
                logger.exception("Abonné %r en erreur sur %s %s", listener, event, self.entity_name)

    # ---------------- Helpers ---------------- #

    @staticmethod
    def _to_dict(item: Union[BaseModel, Mapping[str, Any]]) -> Record:
        if isinstance(item, BaseModel):
            return item.model_dump(mode="json")
        return dict(item)

    def _index_of(self, data: List[Record], obj_id: Any) -> int:
        for idx, existing in enumerate(data):
            if str(existing.get(self.key)) == str(obj_id):
                return idx
        return -1

    # ---------------- CRUD ---------------- #

    def list_all(self) -> List[Record]:
        return self._read_raw()

    def get_by_id(self, obj_id: Any) -> Optional[Record]:
        data = self._read_raw()
        idx = self._index_of(data, obj_id)
        return data[idx] if idx >= 0 else None

    def add(self, item: Union[BaseModel, Mapping[str, Any]]) -> Record:
        record = self._to_dict(item)
        k = self.key
        if not record.get(k):
            record[k] = uuid4().hex
        with self._lock:
            data = self._read_raw()
            if self._index_of(data, record[k]) >= 0:
                raise ValueError(f"{self.entity_name} with {k}={record[k]} already exists")
            data.append(record)
            self._write_raw(data)
        self._notify("insert", record)
        return record

    def update(
        self,
        obj_id: Any,
        fields: Mapping[str, Any],
        precondition: Optional[Callable[[Record], None]] = None,
    ) -> Record:
        """Fusionne `fields` dans l'enregistrement ; `precondition` peut lever pour refuser l'écriture."""
        with self._lock:
            data = self._read_raw()
            idx = self._index_of(data, obj_id)
            if idx < 0:
                raise KeyError(f"{self.entity_name} with {self.key}={obj_id} not found")
            if precondition is not None:
                precondition(data[idx])
            patch = json.loads(json.dumps(dict(fields), default=_json_default))
            merged = {**data[idx], **patch}
            data[idx] = merged
            self._write_raw(data)
        self._notify("update", merged)
        return merged

    def delete(self, obj_id: Any) -> bool:
        with self._lock:
            data = self._read_raw()
            idx = self._index_of(data, obj_id)
            if idx < 0:
                return False
            removed = data.pop(idx)
            self._write_raw(data)
        self._notify("delete", removed)
        return True

    # ---------------- Recherches ---------------- #

    def find(self, predicate: Callable[[Record], bool]) -> List[Record]:
        return [r for r in self._read_raw() if predicate(r)]

