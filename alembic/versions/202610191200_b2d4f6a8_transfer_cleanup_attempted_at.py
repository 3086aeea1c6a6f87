from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610191200_b2d4f6a8"
down_revision = "202610190900_a1c3e5f7"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table('transfers') as batch_op:
        batch_op.add_column(sa.Column('cleanup_attempted_at', sa.DateTime(), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table('transfers') as batch_op:
        batch_op.drop_column('cleanup_attempted_at')
