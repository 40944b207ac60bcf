#!/usr/bin/env python3
"""
Seed a synthetic calibrated NCLEX item bank.

Writes 3PL items generated by ``app.core.cat.simulation.generate_item_bank``
into the configured database, optionally running a simulation study against
the generated bank first.

Usage:
    # Seed 60 items per category into DATABASE_URL (or the default SQLite file)
    python scripts/seed_item_bank.py

    # Replace an existing bank
    python scripts/seed_item_bank.py --replace --items-per-category 80

    # Dry run with a 200-examinee simulation report
    python scripts/seed_item_bank.py --dry-run --simulate 200
"""

import argparse
import logging
import os
import sys

# Add backend and repository root to path for imports
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _BACKEND_DIR)
sys.path.insert(0, os.path.dirname(_BACKEND_DIR))

from sqlalchemy import delete, func, select  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from app.core.cat.item_bank import Item  # noqa: E402
from app.core.cat.simulation import (  # noqa: E402
    SimulationConfig,
    generate_item_bank,
    generate_report,
    run_simulation,
)
from app.core.logging_config import setup_logging  # noqa: E402
from app.models import Base, SessionLocal, engine  # noqa: E402
from app.models.models import Item as ItemRecord  # noqa: E402
from libs.domain_types import ItemType, NclexCategory  # noqa: E402

logger = logging.getLogger(__name__)


def item_to_record(item: Item) -> ItemRecord:
    """Convert an engine Item to an ``items`` row (the id is reassigned)."""
    return ItemRecord(
        category=NclexCategory(item.category),
        item_type=ItemType(item.item_type),
        stem=item.stem,
        options=[{"id": option_id, "text": text} for option_id, text in item.options],
        correct_options=sorted(item.correct_options),
        explanation=item.explanation,
        difficulty=item.difficulty,
        discrimination=item.discrimination,
        guessing=item.guessing,
        exposure_count=0,
        is_active=True,
    )


def seed(db: Session, items_per_category: int, seed_value: int, replace: bool) -> int:
    """
    Insert a generated bank and return the number of items written.

    Refuses to add to a non-empty bank unless ``replace`` is set.
    """
    existing = db.scalar(select(func.count(ItemRecord.id))) or 0
    if existing and not replace:
        raise SystemExit(
            f"Item bank already holds {existing} items; pass --replace to overwrite"
        )
    if existing:
        logger.warning(f"Deleting {existing} existing items")
        db.execute(delete(ItemRecord))

    items = generate_item_bank(items_per_category=items_per_category, seed=seed_value)
    db.add_all(item_to_record(item) for item in items)
    db.commit()
    logger.info(f"Seeded {len(items)} items")
    return len(items)


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed a synthetic NCLEX item bank")
    parser.add_argument(
        "--items-per-category",
        type=int,
        default=60,
        help="Items generated for each of the eight categories (default: 60)",
    )
    parser.add_argument(
        "--seed", type=int, default=42, help="Random seed (default: 42)"
    )
    parser.add_argument(
        "--replace",
        action="store_true",
        help="Delete the existing bank before seeding",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Generate the bank without writing to the database",
    )
    parser.add_argument(
        "--simulate",
        type=int,
        default=0,
        metavar="N",
        help="Run an N-examinee simulation on the generated bank and print a report",
    )
    args = parser.parse_args()

    setup_logging()

    if args.items_per_category < 1:
        parser.error("--items-per-category must be at least 1")

    if args.simulate:
        result = run_simulation(
            SimulationConfig(
                n_examinees=args.simulate,
                items_per_category=args.items_per_category,
                seed=args.seed,
            )
        )
        print(generate_report(result))

    if args.dry_run:
        items = generate_item_bank(
            items_per_category=args.items_per_category, seed=args.seed
        )
        print(f"[DRY RUN] Would seed {len(items)} items")
        return 0

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        count = seed(db, args.items_per_category, args.seed, args.replace)
    finally:
        db.close()

    print(f"Seeded {count} items into {engine.url.render_as_string()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
