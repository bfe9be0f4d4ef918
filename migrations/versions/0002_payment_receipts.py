"""payment receipts

Revision ID: 0002_payment_receipts
Revises: 0001_ledger_schema
Create Date: 2026-10-17 12:00:00
"""

from alembic import op
import sqlalchemy as sa

revision = "0002_payment_receipts"
down_revision = "0001_ledger_schema"
branch_labels = None
depends_on = None

def upgrade():
    with op.batch_alter_table('payments') as batch_op:
        batch_op.add_column(sa.Column('receipt_url', sa.String(length=255), nullable=True))

def downgrade():
    with op.batch_alter_table('payments') as batch_op:
        batch_op.drop_column('receipt_url')
