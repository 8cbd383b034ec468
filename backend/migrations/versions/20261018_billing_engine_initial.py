# Overview: Alembic migration creating the billing lifecycle schema.

"""Billing lifecycle engine: tenants, catalog and coupons, quotes, invoices, subscriptions, activity

MIGRATION OVERVIEW:

1. TENANCY:
   - tenants (slug unique; embedded in quote/invoice numbers)
   - customer_organizations with cached subscription_plan / subscription_status
     and an optional standing discount

2. CATALOG:
   - product_plans, product_pricing (base/regional, monthly/yearly, per-seat)
   - coupons (per-tenant unique code, redemption counter)

3. DOCUMENTS:
   - subscriptions (check: active => current_period_end > current_period_start)
   - invoices, quotes (line_items stored as versioned JSON text)
   - Per-tenant unique document numbers
   - version_id columns for optimistic locking

4. AUDIT / SEQUENCES:
   - activity_log_entries (append-only, no FK to the entity it describes)
   - document_sequences (tenant_id, document_type) unique counter rows

Revision ID: bl001_billing_engine
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'bl001_billing_engine'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def _billing_snapshot():
    return [
        sa.Column('billing_name', sa.String(length=255), nullable=True),
        sa.Column('billing_email', sa.String(length=255), nullable=True),
        sa.Column('billing_address', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
    ]


def _money():
    return [
        sa.Column('line_items', sa.Text(), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD'),
    ]


def upgrade():
    # ==========================================================================
    # Tenancy
    # ==========================================================================
    print("Creating tenants and customer organizations...")

    op.create_table(
        'tenants',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=64), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_tenants_slug', 'tenants', ['slug'], unique=True)
    op.create_index('ix_tenants_is_active', 'tenants', ['is_active'])

    op.create_table(
        'customer_organizations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('billing_email', sa.String(length=255), nullable=True),
        sa.Column('billing_address', sa.Text(), nullable=True),
        sa.Column('subscription_plan', sa.String(length=255), nullable=False, server_default='free'),
        sa.Column('subscription_status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('discount_type', sa.String(length=16), nullable=True),
        sa.Column('discount_value', sa.Integer(), nullable=True),
        *_timestamps(),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_customer_organizations_tenant_id', 'customer_organizations', ['tenant_id'])
    op.create_index('ix_customer_orgs_tenant_name', 'customer_organizations', ['tenant_id', 'name'])

    # ==========================================================================
    # Catalog
    # ==========================================================================
    print("Creating product plans and pricing...")

    op.create_table(
        'product_plans',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_product_plans_tenant_id', 'product_plans', ['tenant_id'])
    op.create_index('ix_product_plans_tenant_status', 'product_plans', ['tenant_id', 'status'])

    op.create_table(
        'product_pricing',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('plan_id', sa.Integer(), sa.ForeignKey('product_plans.id'), nullable=False),
        sa.Column('pricing_type', sa.String(length=16), nullable=False, server_default='base'),
        sa.Column('region', sa.String(length=32), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD'),
        sa.Column('amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('interval', sa.String(length=16), nullable=True),
        sa.Column('per_seat_amount_cents', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_product_pricing_plan_id', 'product_pricing', ['plan_id'])
    op.create_index('ix_product_pricing_plan_type', 'product_pricing', ['plan_id', 'pricing_type'])

    op.create_table(
        'coupons',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('discount_type', sa.String(length=32), nullable=False, server_default='percentage'),
        sa.Column('discount_value', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('max_redemptions', sa.Integer(), nullable=True),
        sa.Column('redemption_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('applicable_plan_ids', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'code', name='uq_coupons_tenant_code'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_coupons_tenant_id', 'coupons', ['tenant_id'])

    # ==========================================================================
    # Documents
    # ==========================================================================
    print("Creating subscriptions, invoices and quotes...")

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('customer_id', sa.Integer(), sa.ForeignKey('customer_organizations.id'), nullable=False),
        sa.Column('plan_id', sa.Integer(), sa.ForeignKey('product_plans.id'), nullable=False),
        sa.Column('subscription_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('billing_cycle', sa.String(length=16), nullable=False, server_default='monthly'),
        sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('mrr_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('seats', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('pricing_source', sa.String(length=32), nullable=True),
        sa.Column('discounts_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('coupon_id', sa.Integer(), sa.ForeignKey('coupons.id'), nullable=True),
        sa.Column('linked_deal_id', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('canceled_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.UniqueConstraint('tenant_id', 'subscription_number', name='uq_subscriptions_tenant_number'),
        sa.CheckConstraint(
            "status != 'active' OR (current_period_end IS NOT NULL "
            "AND current_period_start IS NOT NULL "
            "AND current_period_end > current_period_start)",
            name='ck_subscriptions_active_period',
        ),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_subscriptions_tenant_id', 'subscriptions', ['tenant_id'])
    op.create_index('ix_subscriptions_customer_id', 'subscriptions', ['customer_id'])
    op.create_index('ix_subscriptions_plan_id', 'subscriptions', ['plan_id'])
    op.create_index('ix_subscriptions_coupon_id', 'subscriptions', ['coupon_id'])
    op.create_index('ix_subscriptions_status', 'subscriptions', ['status'])
    op.create_index('ix_subscriptions_tenant_status', 'subscriptions', ['tenant_id', 'status'])

    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('customer_id', sa.Integer(), sa.ForeignKey('customer_organizations.id'), nullable=False),
        sa.Column('subscription_id', sa.Integer(), sa.ForeignKey('subscriptions.id'), nullable=True),
        sa.Column('source_quote_id', sa.Integer(), nullable=True),
        sa.Column('invoice_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='draft'),
        *_money(),
        sa.Column('issue_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('canceled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('pdf_path', sa.String(length=512), nullable=True),
        *_billing_snapshot(),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.UniqueConstraint('tenant_id', 'invoice_number', name='uq_invoices_tenant_number'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_invoices_tenant_id', 'invoices', ['tenant_id'])
    op.create_index('ix_invoices_customer_id', 'invoices', ['customer_id'])
    op.create_index('ix_invoices_subscription_id', 'invoices', ['subscription_id'])
    op.create_index('ix_invoices_source_quote_id', 'invoices', ['source_quote_id'])
    op.create_index('ix_invoices_status', 'invoices', ['status'])
    op.create_index('ix_invoices_tenant_status', 'invoices', ['tenant_id', 'status'])
    op.create_index('ix_invoices_tenant_due_date', 'invoices', ['tenant_id', 'due_date'])

    op.create_table(
        'quotes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('customer_id', sa.Integer(), sa.ForeignKey('customer_organizations.id'), nullable=False),
        sa.Column('deal_id', sa.String(length=64), nullable=True),
        sa.Column('plan_id', sa.Integer(), sa.ForeignKey('product_plans.id'), nullable=True),
        sa.Column('quote_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='draft'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('parent_quote_id', sa.Integer(), sa.ForeignKey('quotes.id'), nullable=True),
        *_money(),
        sa.Column('valid_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('converted_to_invoice_id', sa.Integer(), sa.ForeignKey('invoices.id'), nullable=True),
        sa.Column('pdf_path', sa.String(length=512), nullable=True),
        *_billing_snapshot(),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expired_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.UniqueConstraint('tenant_id', 'quote_number', name='uq_quotes_tenant_number'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_quotes_tenant_id', 'quotes', ['tenant_id'])
    op.create_index('ix_quotes_customer_id', 'quotes', ['customer_id'])
    op.create_index('ix_quotes_deal_id', 'quotes', ['deal_id'])
    op.create_index('ix_quotes_plan_id', 'quotes', ['plan_id'])
    op.create_index('ix_quotes_status', 'quotes', ['status'])
    op.create_index('ix_quotes_parent_quote_id', 'quotes', ['parent_quote_id'])
    op.create_index('ix_quotes_converted_to_invoice_id', 'quotes', ['converted_to_invoice_id'])
    op.create_index('ix_quotes_tenant_status', 'quotes', ['tenant_id', 'status'])

    # ==========================================================================
    # Audit trail and sequences
    # ==========================================================================
    print("Creating activity log and document sequences...")

    op.create_table(
        'activity_log_entries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('activity_type', sa.String(length=32), nullable=False),
        sa.Column('description', sa.String(length=512), nullable=False),
        sa.Column('actor_id', sa.String(length=64), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_activity_log_entries_tenant_id', 'activity_log_entries', ['tenant_id'])
    op.create_index('ix_activity_log_entries_entity_type', 'activity_log_entries', ['entity_type'])
    op.create_index('ix_activity_log_entries_entity_id', 'activity_log_entries', ['entity_id'])
    op.create_index('ix_activity_log_entries_activity_type', 'activity_log_entries', ['activity_type'])
    op.create_index('ix_activity_log_entries_actor_id', 'activity_log_entries', ['actor_id'])
    op.create_index(
        'ix_activity_entity_created', 'activity_log_entries', ['entity_type', 'entity_id', 'created_at']
    )

    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('tenant_id', 'document_type', name='uq_doc_sequences_tenant_type'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_document_sequences_tenant_id', 'document_sequences', ['tenant_id'])
    op.create_index('ix_document_sequences_document_type', 'document_sequences', ['document_type'])

    print("Billing schema created.")


def downgrade():
    # Reverse dependency order
    op.drop_table('document_sequences')
    op.drop_table('activity_log_entries')
    op.drop_table('quotes')
    op.drop_table('invoices')
    op.drop_table('subscriptions')
    op.drop_table('coupons')
    op.drop_table('product_pricing')
    op.drop_table('product_plans')
    op.drop_table('customer_organizations')
    op.drop_table('tenants')
