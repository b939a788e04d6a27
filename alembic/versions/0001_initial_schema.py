"""Initial ledger schema: container types, nomenclature, batches, movements."""

from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _column_types() -> dict[str, str]:
    # Enums are VARCHAR + CHECK so the same DDL runs on SQLite and PostgreSQL.
    if op.get_bind().dialect.name == "postgresql":
        return {
            "uuid": "UUID",
            "timestamp": "TIMESTAMP WITH TIME ZONE",
            "serial_pk": "BIGSERIAL PRIMARY KEY",
        }
    return {
        "uuid": "CHAR(32)",
        "timestamp": "DATETIME",
        "serial_pk": "INTEGER PRIMARY KEY AUTOINCREMENT",
    }


def upgrade() -> None:
    t = _column_types()

    op.execute(
        f"""
        CREATE TABLE IF NOT EXISTS container_types (
            id {t["uuid"]} PRIMARY KEY,
            code VARCHAR(64) NOT NULL UNIQUE,
            name VARCHAR(255) NOT NULL,
            surface_area_cm2 DOUBLE PRECISION,
            volume_ml DOUBLE PRECISION,
            optimal_confluency DOUBLE PRECISION,
            is_cryo BOOLEAN NOT NULL DEFAULT FALSE,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            created_at {t["timestamp"]} NOT NULL,
            CONSTRAINT check_surface_area_positive
                CHECK (surface_area_cm2 IS NULL OR surface_area_cm2 > 0),
            CONSTRAINT check_container_volume_positive
                CHECK (volume_ml IS NULL OR volume_ml > 0),
            CONSTRAINT check_confluency_positive
                CHECK (optimal_confluency IS NULL OR optimal_confluency > 0)
        )
        """
    )

    op.execute(
        f"""
        CREATE TABLE IF NOT EXISTS nomenclatures (
            id {t["uuid"]} PRIMARY KEY,
            name VARCHAR(255) NOT NULL,
            category VARCHAR(32) NOT NULL,
            unit VARCHAR(16) NOT NULL,
            container_type_id {t["uuid"]} REFERENCES container_types(id),
            storage_temp DOUBLE PRECISION,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            created_at {t["timestamp"]} NOT NULL,
            CONSTRAINT nomenclature_category CHECK (category IN (
                'medium', 'serum', 'buffer', 'supplement',
                'enzyme', 'reagent', 'consumable', 'equipment'
            ))
        )
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS ix_nomenclatures_name ON nomenclatures (name)")

    op.execute(
        f"""
        CREATE TABLE IF NOT EXISTS batches (
            id {t["uuid"]} PRIMARY KEY,
            nomenclature_id {t["uuid"]} NOT NULL REFERENCES nomenclatures(id),
            batch_number VARCHAR(64) NOT NULL,
            quantity INTEGER NOT NULL,
            volume_per_unit NUMERIC(14, 3),
            current_unit_volume NUMERIC(14, 3),
            expiration_date DATE,
            status VARCHAR(16) NOT NULL,
            manufacturer VARCHAR(255),
            supplier VARCHAR(255),
            catalog_number VARCHAR(128),
            invoice_number VARCHAR(128),
            invoice_date DATE,
            storage_location VARCHAR(255),
            notes TEXT,
            created_at {t["timestamp"]} NOT NULL,
            updated_at {t["timestamp"]} NOT NULL,
            CONSTRAINT check_batch_quantity_non_negative CHECK (quantity >= 0),
            CONSTRAINT check_volume_per_unit_positive
                CHECK (volume_per_unit IS NULL OR volume_per_unit > 0),
            CONSTRAINT check_current_unit_volume_non_negative
                CHECK (current_unit_volume IS NULL OR current_unit_volume >= 0),
            CONSTRAINT check_current_unit_volume_bounded
                CHECK (current_unit_volume IS NULL OR current_unit_volume <= volume_per_unit),
            CONSTRAINT check_unit_volume_pairing
                CHECK ((volume_per_unit IS NULL) = (current_unit_volume IS NULL)),
            CONSTRAINT batch_status
                CHECK (status IN ('available', 'reserved', 'expired', 'depleted')),
            CONSTRAINT uq_batches_nomenclature_number UNIQUE (nomenclature_id, batch_number)
        )
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_batches_fefo "
        "ON batches (nomenclature_id, status, expiration_date)"
    )

    op.execute(
        f"""
        CREATE TABLE IF NOT EXISTS inventory_movements (
            id {t["serial_pk"]},
            batch_id {t["uuid"]} NOT NULL REFERENCES batches(id),
            movement_type VARCHAR(16) NOT NULL,
            amount NUMERIC(14, 3) NOT NULL,
            quantity_delta INTEGER NOT NULL,
            volume_delta NUMERIC(14, 3),
            quantity_after INTEGER NOT NULL,
            volume_after NUMERIC(14, 3),
            reason VARCHAR(255) NOT NULL,
            operation_ref VARCHAR(128),
            moved_by VARCHAR(128),
            moved_at {t["timestamp"]} NOT NULL,
            CONSTRAINT check_quantity_after_non_negative CHECK (quantity_after >= 0),
            CONSTRAINT check_volume_after_non_negative
                CHECK (volume_after IS NULL OR volume_after >= 0),
            CONSTRAINT movement_type CHECK (movement_type IN ('receive', 'consume', 'adjust'))
        )
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_inventory_movements_batch "
        "ON inventory_movements (batch_id, id)"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_inventory_movements_operation_ref "
        "ON inventory_movements (operation_ref)"
    )


def downgrade() -> None:
    for statement in [
        "DROP TABLE IF EXISTS inventory_movements",
        "DROP TABLE IF EXISTS batches",
        "DROP TABLE IF EXISTS nomenclatures",
        "DROP TABLE IF EXISTS container_types",
    ]:
        op.execute(statement)
