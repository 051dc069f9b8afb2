"""unique index on lower(email)

Revision ID: c4a9e1d7b2f6
Revises: 8e4d2a7c51f3
Create Date: 2026-10-19 10:03:27.518842

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'c4a9e1d7b2f6'
down_revision: Union[str, None] = '8e4d2a7c51f3'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_index('ux_users_email_lower', 'users', [sa.text('lower(email)')], unique=True)


def downgrade() -> None:
    op.drop_index('ux_users_email_lower', table_name='users')
