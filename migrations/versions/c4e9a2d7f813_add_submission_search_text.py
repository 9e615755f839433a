"""add search_text to submissions

Revision ID: c4e9a2d7f813
Revises: b7d2f9a41c68
Create Date: 2026-10-19

"""

import json
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = "c4e9a2d7f813"
down_revision: Union[str, Sequence[str], None] = "b7d2f9a41c68"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _values(value):
    if value is None:
        return
    if isinstance(value, dict):
        for v in value.values():
            yield from _values(v)
    elif isinstance(value, list):
        for v in value:
            yield from _values(v)
    else:
        yield str(value)


def _loads(raw):
    if isinstance(raw, (str, bytes)):
        return json.loads(raw)
    return raw


def upgrade() -> None:
    bind = op.get_bind()
    insp = inspect(bind)
    cols = {c["name"] for c in insp.get_columns("submissions")}

    if "search_text" not in cols:
        with op.batch_alter_table("submissions") as batch_op:
            batch_op.add_column(sa.Column("search_text", sa.Text(), nullable=False, server_default=""))

    # backfill rows written before the column existed
    submissions = sa.table(
        "submissions",
        sa.column("id", sa.Integer()),
        sa.column("data", sa.Text()),
        sa.column("tags", sa.Text()),
        sa.column("search_text", sa.Text()),
    )
    rows = bind.execute(
        sa.select(submissions.c.id, submissions.c.data, submissions.c.tags).where(submissions.c.search_text == "")
    ).all()
    for row in rows:
        parts = list(_values(_loads(row.data))) + list(_values(_loads(row.tags)))
        bind.execute(
            submissions.update()
            .where(submissions.c.id == row.id)
            .values(search_text="\n".join(parts).lower())
        )


def downgrade() -> None:
    with op.batch_alter_table("submissions") as batch_op:
        batch_op.drop_column("search_text")
