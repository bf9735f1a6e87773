"""team_players_tournament_unique

Revision ID: 002
Revises: 001
Create Date: 2026-10-18 12:00:00.000000

Copy tournament_id onto team_players and add a unique constraint on
(tournament_id, user_id), so a user can be on at most one team per
tournament even when two invites are accepted at the same time.
Unlinked roster rows (user_id NULL) are not constrained.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add team_players.tournament_id, backfill it, then constrain it."""
    op.add_column("team_players", sa.Column("tournament_id", sa.Integer(), nullable=True))
    op.execute(
        """
        UPDATE team_players
        SET tournament_id = (SELECT teams.tournament_id FROM teams WHERE teams.id = team_players.team_id)
        """
    )
    with op.batch_alter_table("team_players") as batch_op:
        batch_op.alter_column("tournament_id", existing_type=sa.Integer(), nullable=False)
        batch_op.create_foreign_key(
            "fk_team_players_tournament_id", "tournaments", ["tournament_id"], ["id"]
        )
        batch_op.create_unique_constraint(
            "uq_team_players_tournament_user", ["tournament_id", "user_id"]
        )


def downgrade() -> None:
    """Drop the constraint and the copied column."""
    with op.batch_alter_table("team_players") as batch_op:
        batch_op.drop_constraint("uq_team_players_tournament_user", type_="unique")
        batch_op.drop_constraint("fk_team_players_tournament_id", type_="foreignkey")
        batch_op.drop_column("tournament_id")
