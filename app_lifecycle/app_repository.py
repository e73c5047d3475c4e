import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from app_lifecycle.db import get_connection, init_db
from app_lifecycle.models import InstalledApp

_UNSET = object()


class AppRepository:
    """
    Registry of installed apps. Holds the install flag (row present), the
    installed version marker and the form values the env was generated from.
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        init_db(self.db_path)

    def list(self) -> List[InstalledApp]:
        conn = get_connection(self.db_path)
        rows = conn.execute("SELECT * FROM apps ORDER BY id").fetchall()
        conn.close()
        return [self._row_to_model(r) for r in rows]

    def get(self, app_id: str) -> Optional[InstalledApp]:
        conn = get_connection(self.db_path)
        row = conn.execute("SELECT * FROM apps WHERE id = ?", (app_id,)).fetchone()
        conn.close()
        return self._row_to_model(row) if row else None

    def create(
        self,
        *,
        id: str,
        status: str,
        version: Optional[int] = None,
        config: Optional[Dict[str, str]] = None,
        exposed: bool = False,
        domain: Optional[str] = None,
    ) -> InstalledApp:
        conn = get_connection(self.db_path)
        conn.execute(
            """
            INSERT INTO apps (id, status, version, config, exposed, domain)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (id, status, version, json.dumps(config or {}), int(exposed), domain),
        )
        conn.commit()
        conn.close()
        return self.get(id)

    def update(
        self,
        app_id: str,
        *,
        status: Optional[str] = None,
        version: Any = _UNSET,
        config: Optional[Dict[str, str]] = None,
        exposed: Optional[bool] = None,
        domain: Any = _UNSET,
    ) -> Optional[InstalledApp]:
        sets: List[str] = []
        params: List[Any] = []
        if status is not None:
            sets.append("status = ?")
            params.append(status)
        if version is not _UNSET:
            sets.append("version = ?")
            params.append(version)
        if config is not None:
            sets.append("config = ?")
            params.append(json.dumps(config))
        if exposed is not None:
            sets.append("exposed = ?")
            params.append(int(exposed))
        if domain is not _UNSET:
            sets.append("domain = ?")
            params.append(domain)
        if not sets:
            return self.get(app_id)

        sets.append("updated_at = CURRENT_TIMESTAMP")
        conn = get_connection(self.db_path)
        conn.execute(f"UPDATE apps SET {', '.join(sets)} WHERE id = ?", (*params, app_id))
        conn.commit()
        conn.close()
        return self.get(app_id)

    def update_status(self, app_id: str, status: str) -> Optional[InstalledApp]:
        return self.update(app_id, status=status)

    def delete(self, app_id: str) -> bool:
        conn = get_connection(self.db_path)
        cur = conn.cursor()
        cur.execute("DELETE FROM apps WHERE id = ?", (app_id,))
        deleted = cur.rowcount > 0
        conn.commit()
        conn.close()
        return deleted

    def _row_to_model(self, r) -> InstalledApp:
        return InstalledApp(
            id=r["id"],
            status=r["status"],
            version=r["version"],
            config=json.loads(r["config"] or "{}"),
            exposed=bool(r["exposed"]),
            domain=r["domain"],
            created_at=r["created_at"],
            updated_at=r["updated_at"],
        )
