from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610190900_a1c3e5f7"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('email', sa.String(), nullable=True, unique=True, index=True),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('hashed_password', sa.String(), nullable=True),
        sa.Column('plan', sa.String(length=16), nullable=False, server_default='FREE'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default=sa.text('1')),
        sa.Column('is_admin', sa.Boolean(), nullable=True, server_default=sa.text('0')),
    )

    op.create_table(
        'brandings',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('user_id', sa.String(length=36), sa.ForeignKey('users.id'), unique=True, index=True),
        sa.Column('company_name', sa.String(), nullable=True),
        sa.Column('logo_url', sa.String(), nullable=True),
        sa.Column('primary_color', sa.String(length=16), nullable=True),
        sa.Column('secondary_color', sa.String(length=16), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'transfers',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('slug', sa.String(length=64), nullable=False, unique=True, index=True),
        sa.Column('owner_id', sa.String(length=36), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('total_size_bytes', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE', index=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False, index=True),
        sa.Column('expired_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('cleanup_pending', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('password_hash', sa.String(), nullable=True),
        sa.Column('branding_id', sa.String(length=36), sa.ForeignKey('brandings.id'), nullable=True),
    )

    op.create_table(
        'upload_sessions',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('owner_id', sa.String(length=36), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('upload_id', sa.String(), nullable=False),
        sa.Column('storage_key', sa.String(), nullable=False, unique=True, index=True),
        sa.Column('file_name', sa.String(), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=False),
        sa.Column('content_type', sa.String(), nullable=False),
        sa.Column('part_size', sa.Integer(), nullable=False),
        sa.Column('part_count', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING', index=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('consumed_at', sa.DateTime(), nullable=True),
        sa.Column('transfer_id', sa.String(length=36), sa.ForeignKey('transfers.id'), nullable=True),
    )

    op.create_table(
        'file_objects',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('transfer_id', sa.String(length=36), sa.ForeignKey('transfers.id'), nullable=False, index=True),
        sa.Column('storage_key', sa.String(), nullable=False, unique=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('size_bytes', sa.BigInteger(), nullable=False),
        sa.Column('content_type', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'recipients',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('transfer_id', sa.String(length=36), sa.ForeignKey('transfers.id'), nullable=False, index=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('token', sa.String(length=64), nullable=False, unique=True, index=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.String(), nullable=True),
        sa.Column('message_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('opened_at', sa.DateTime(), nullable=True),
        sa.Column('clicked_at', sa.DateTime(), nullable=True),
        sa.Column('open_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('click_count', sa.Integer(), nullable=False, server_default='0'),
    )

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('user_id', sa.String(length=36), nullable=True, index=True),
        sa.Column('action', sa.String(length=64), nullable=False, index=True),
        sa.Column('resource_type', sa.String(length=32), nullable=True),
        sa.Column('resource_id', sa.String(length=36), nullable=True),
        sa.Column('ip_address', sa.String(), nullable=True),
        sa.Column('user_agent', sa.String(), nullable=True),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('recipients')
    op.drop_table('file_objects')
    op.drop_table('upload_sessions')
    op.drop_table('transfers')
    op.drop_table('brandings')
    op.drop_table('users')
