"""Fulfillment lifecycle schema

Revision ID: 001
Revises: None
Create Date: 2026-10-19

Creates: orders, order_items, vendor_policies, sectors, delivery_slots,
delivery_partners, delivery_assignments, assignment_requests, event_outbox,
processed_events
Status columns are VARCHAR with CHECK constraints (stored by enum value).
"""

from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto";')

    # ── 1. Orders and items ───────────────────────────────────────────────
    op.execute("""
        CREATE TABLE orders (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            order_number VARCHAR(50) NOT NULL,
            customer_id UUID NOT NULL,
            customer_name VARCHAR(200),
            total_amount NUMERIC(15,2) NOT NULL,
            currency VARCHAR(3) NOT NULL DEFAULT 'INR',
            payment_method VARCHAR(30),
            payment_status VARCHAR(32) NOT NULL DEFAULT 'PENDING',
            delivery_address_line VARCHAR(500),
            delivery_pincode VARCHAR(10),
            delivery_sector_id UUID,
            delivery_slot_id UUID,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_orders_order_number UNIQUE (order_number),
            CONSTRAINT ck_orders_payment_status
                CHECK (payment_status IN ('PENDING', 'PAID', 'REFUNDED', 'FAILED')),
            CONSTRAINT ck_orders_total_non_negative CHECK (total_amount >= 0)
        );
    """)
    op.execute("CREATE INDEX ix_orders_customer_id ON orders (customer_id);")
    op.execute("CREATE INDEX ix_orders_delivery_pincode ON orders (delivery_pincode);")

    op.execute("""
        CREATE TABLE order_items (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            order_id UUID NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
            vendor_id UUID NOT NULL,
            vendor_name VARCHAR(200),
            product_name VARCHAR(255) NOT NULL,
            unit_price NUMERIC(12,2) NOT NULL,
            quantity INTEGER NOT NULL,
            line_total NUMERIC(15,2) NOT NULL,
            item_status VARCHAR(32) NOT NULL DEFAULT 'pending',
            version INTEGER NOT NULL DEFAULT 1,
            vendor_notes TEXT,
            confirmed_by VARCHAR(64),
            confirmed_at TIMESTAMPTZ,
            cancelled_by VARCHAR(64),
            cancelled_at TIMESTAMPTZ,
            cancellation_reason TEXT,
            picked_up_at TIMESTAMPTZ,
            delivered_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_order_items_status
                CHECK (item_status IN ('pending', 'confirmed', 'delivered', 'cancelled')),
            CONSTRAINT ck_order_items_quantity_positive CHECK (quantity > 0)
        );
    """)
    op.execute("CREATE INDEX ix_order_items_order_id ON order_items (order_id);")
    op.execute("CREATE INDEX ix_order_items_vendor_status ON order_items (vendor_id, item_status);")
    op.execute("CREATE INDEX ix_order_items_status ON order_items (item_status);")

    # ── 2. Vendor policy ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE vendor_policies (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            vendor_id UUID NOT NULL,
            vendor_name VARCHAR(200),
            auto_approve_orders BOOLEAN NOT NULL DEFAULT false,
            order_confirmation_timeout_minutes INTEGER NOT NULL DEFAULT 15,
            auto_approve_under_amount NUMERIC(12,2),
            business_hours_start TIME NOT NULL DEFAULT '09:00',
            business_hours_end TIME NOT NULL DEFAULT '18:00',
            auto_approve_during_business_hours_only BOOLEAN NOT NULL DEFAULT true,
            version INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_vendor_policies_vendor_id UNIQUE (vendor_id),
            CONSTRAINT ck_vendor_policies_timeout CHECK (order_confirmation_timeout_minutes >= 1),
            CONSTRAINT ck_vendor_policies_cap
                CHECK (auto_approve_under_amount IS NULL OR auto_approve_under_amount >= 0)
        );
    """)

    # ── 3. Geography and delivery partners ────────────────────────────────
    op.execute("""
        CREATE TABLE sectors (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            city_name VARCHAR(100) NOT NULL,
            name VARCHAR(100) NOT NULL,
            pincodes JSON NOT NULL DEFAULT '[]',
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)

    op.execute("""
        CREATE TABLE delivery_slots (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            sector_id UUID NOT NULL REFERENCES sectors(id) ON DELETE CASCADE,
            slot_name VARCHAR(100) NOT NULL,
            start_time TIME NOT NULL,
            end_time TIME NOT NULL,
            cutoff_time TIME NOT NULL,
            max_orders INTEGER NOT NULL DEFAULT 10,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute("CREATE INDEX ix_delivery_slots_sector_id ON delivery_slots (sector_id);")

    op.execute("""
        CREATE TABLE delivery_partners (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(200) NOT NULL,
            phone VARCHAR(20),
            is_available BOOLEAN NOT NULL DEFAULT false,
            pincodes JSON NOT NULL DEFAULT '[]',
            sector_ids JSON NOT NULL DEFAULT '[]',
            total_deliveries INTEGER NOT NULL DEFAULT 0,
            successful_deliveries INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute("CREATE INDEX ix_delivery_partners_is_available ON delivery_partners (is_available);")

    # ── 4. Assignments ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE delivery_assignments (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            order_id UUID NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
            delivery_partner_id UUID NOT NULL REFERENCES delivery_partners(id) ON DELETE RESTRICT,
            sector_id UUID,
            slot_id UUID,
            status VARCHAR(32) NOT NULL DEFAULT 'assigned',
            is_active BOOLEAN NOT NULL DEFAULT true,
            version INTEGER NOT NULL DEFAULT 1,
            pickup_otp VARCHAR(8) NOT NULL,
            delivery_otp VARCHAR(8) NOT NULL,
            assigned_at TIMESTAMPTZ NOT NULL,
            accepted_at TIMESTAMPTZ,
            picked_up_at TIMESTAMPTZ,
            out_for_delivery_at TIMESTAMPTZ,
            delivered_at TIMESTAMPTZ,
            cancelled_at TIMESTAMPTZ,
            cancellation_reason VARCHAR(100),
            cancellation_details TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_delivery_assignments_status
                CHECK (status IN ('assigned', 'accepted', 'picked_up', 'delivered', 'cancelled'))
        );
    """)
    # One active assignment per order; cancelled rows are kept for audit
    op.execute("""
        CREATE UNIQUE INDEX uq_delivery_assignments_active_order
            ON delivery_assignments (order_id) WHERE is_active;
    """)
    op.execute(
        "CREATE INDEX ix_delivery_assignments_partner_status "
        "ON delivery_assignments (delivery_partner_id, status);"
    )
    op.execute("CREATE INDEX ix_delivery_assignments_slot_id ON delivery_assignments (slot_id);")

    op.execute("""
        CREATE TABLE assignment_requests (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            order_id UUID NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
            status VARCHAR(32) NOT NULL DEFAULT 'QUEUED',
            attempts INTEGER NOT NULL DEFAULT 0,
            last_error TEXT,
            last_attempt_at TIMESTAMPTZ,
            excluded_partner_ids JSON NOT NULL DEFAULT '[]',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_assignment_requests_order_id UNIQUE (order_id),
            CONSTRAINT ck_assignment_requests_status
                CHECK (status IN ('QUEUED', 'MISSING_GEO', 'FULFILLED', 'CLOSED'))
        );
    """)
    op.execute("CREATE INDEX ix_assignment_requests_status ON assignment_requests (status);")

    # ── 5. Event outbox ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE event_outbox (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            event_type VARCHAR(64) NOT NULL,
            event_key VARCHAR(160) NOT NULL,
            aggregate_type VARCHAR(64) NOT NULL,
            aggregate_id VARCHAR(64) NOT NULL,
            payload JSON NOT NULL DEFAULT '{}',
            status VARCHAR(32) NOT NULL DEFAULT 'PENDING',
            retry_count INTEGER NOT NULL DEFAULT 0,
            max_retries INTEGER NOT NULL DEFAULT 3,
            last_error TEXT,
            processed_at TIMESTAMPTZ,
            schema_version INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_event_outbox_status
                CHECK (status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED'))
        );
    """)
    op.execute("CREATE INDEX ix_event_outbox_status_created ON event_outbox (status, created_at);")
    op.execute("CREATE INDEX ix_event_outbox_event_key ON event_outbox (event_key);")
    op.execute("CREATE INDEX ix_event_outbox_aggregate ON event_outbox (aggregate_type, aggregate_id);")
    op.execute("CREATE INDEX ix_event_outbox_pending ON event_outbox (created_at) WHERE status = 'PENDING';")

    op.execute("""
        CREATE TABLE processed_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            event_key VARCHAR(160) NOT NULL,
            event_type VARCHAR(64) NOT NULL,
            handler_name VARCHAR(255) NOT NULL,
            processed_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            expires_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT uq_processed_events_event_key UNIQUE (event_key)
        );
    """)
    op.execute("CREATE INDEX ix_processed_events_expires_at ON processed_events (expires_at);")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS processed_events;")
    op.execute("DROP TABLE IF EXISTS event_outbox;")
    op.execute("DROP TABLE IF EXISTS assignment_requests;")
    op.execute("DROP TABLE IF EXISTS delivery_assignments;")
    op.execute("DROP TABLE IF EXISTS delivery_partners;")
    op.execute("DROP TABLE IF EXISTS delivery_slots;")
    op.execute("DROP TABLE IF EXISTS sectors;")
    op.execute("DROP TABLE IF EXISTS vendor_policies;")
    op.execute("DROP TABLE IF EXISTS order_items;")
    op.execute("DROP TABLE IF EXISTS orders;")
