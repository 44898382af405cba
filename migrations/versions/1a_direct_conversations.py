"""Create direct conversation and direct message tables"""

from alembic import op
import sqlalchemy as sa

revision = '1a'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'direct_conversation',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('participant_low', sa.String(64), nullable=False),
        sa.Column('participant_high', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('last_message_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint(
            'participant_low', 'participant_high', name='uix_conversation_pair'
        ),
    )
    op.create_index(
        'ix_direct_conversation_participant_low', 'direct_conversation', ['participant_low']
    )
    op.create_index(
        'ix_direct_conversation_participant_high', 'direct_conversation', ['participant_high']
    )
    op.create_index(
        'ix_direct_conversation_last_message_at', 'direct_conversation', ['last_message_at']
    )
    op.create_table(
        'direct_message',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('conversation_id', sa.String(36), nullable=False),
        sa.Column('sender_id', sa.String(64), nullable=False),
        # Legacy plaintext or an ``ENC:v1:`` envelope
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('media_metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('read_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['conversation_id'], ['direct_conversation.id']),
    )
    op.create_index(
        'ix_direct_message_conversation_id', 'direct_message', ['conversation_id']
    )
    op.create_index('ix_direct_message_created_at', 'direct_message', ['created_at'])


def downgrade():
    op.drop_index('ix_direct_message_created_at', table_name='direct_message')
    op.drop_index('ix_direct_message_conversation_id', table_name='direct_message')
    op.drop_table('direct_message')
    op.drop_index('ix_direct_conversation_last_message_at', table_name='direct_conversation')
    op.drop_index('ix_direct_conversation_participant_high', table_name='direct_conversation')
    op.drop_index('ix_direct_conversation_participant_low', table_name='direct_conversation')
    op.drop_table('direct_conversation')
