from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from openpyxl import Workbook

from leadtrack.domain.access import owner_scope
from leadtrack.domain.models import Profile
from leadtrack.store.rows import CLIENT_COLUMNS, INTERACTION_COLUMNS
from leadtrack.store.sqlite import SqliteStore


def export_excel(store: SqliteStore, actor: Profile, out_path: Path) -> dict[str, int]:
    """Write the clients and interactions the actor can see to an .xlsx file.

    Returns the number of rows written per sheet.
    """
    owner_id = owner_scope(actor)
    where = "WHERE clients.owner_id = ?" if owner_id else ""
    params = [owner_id] if owner_id else []

    clients = store.fetch_all(
        f"SELECT {CLIENT_COLUMNS} FROM clients {where} ORDER BY created_at ASC", params
    )
    columns = ", ".join(f"interactions.{c.strip()}" for c in INTERACTION_COLUMNS.split(","))
    interactions = store.fetch_all(
        f"SELECT {columns} FROM interactions "
        f"JOIN clients ON clients.client_id = interactions.client_id {where} "
        "ORDER BY interactions.rowid ASC",
        params,
    )

    out_path.parent.mkdir(parents=True, exist_ok=True)
    wb = Workbook()
    wb.remove(wb.active)
    _write_sheet(wb.create_sheet(title="clients"), clients, CLIENT_COLUMNS)
    _write_sheet(wb.create_sheet(title="interactions"), interactions, INTERACTION_COLUMNS)
    wb.save(out_path)
    return {"clients": len(clients), "interactions": len(interactions)}


def _write_sheet(ws, rows: Iterable, columns: str) -> None:
    headers = [c.strip() for c in columns.split(",")]
    ws.append(headers)
    for row in rows:
        ws.append([row[h] for h in headers])
