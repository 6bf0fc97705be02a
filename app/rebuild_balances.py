from __future__ import annotations

import argparse

from app.db import SessionLocal
from app.logging_config import configure_logging
from app.services.balance_rebuild_service import rebuild_balances


def run(*, warehouse_id: int | None = None) -> int:
    with SessionLocal() as db:
        updated_count = rebuild_balances(db, warehouse_id=warehouse_id)
        db.commit()
    return updated_count


def main() -> None:
    parser = argparse.ArgumentParser(description='Rebuild the cached inventory balances from the transaction ledger.')
    parser.add_argument(
        '--warehouse-id',
        type=int,
        default=None,
        help='Only rebuild balances for this warehouse. Defaults to every warehouse.',
    )
    args = parser.parse_args()

    configure_logging()
    updated_count = run(warehouse_id=args.warehouse_id)
    print(f'Inventory balance rebuild complete: updated={updated_count}')


if __name__ == '__main__':
    main()
