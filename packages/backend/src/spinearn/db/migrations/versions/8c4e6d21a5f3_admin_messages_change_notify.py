"""admin_messages change NOTIFY trigger

Learn: PostgreSQL LISTEN/NOTIFY is the realtime change feed. Every
INSERT/UPDATE/DELETE on admin_messages fires pg_notify on the
'table_changes' channel with the table, operation, and owning user_id.
The app keeps one LISTEN connection and re-pulls unread counts for the
affected user. When an UPDATE moves a row to another user, both users
are notified.

Revision ID: 8c4e6d21a5f3
Revises: 3f1c2a9d7b10
Create Date: 2026-10-19 09:40:03.000000
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '8c4e6d21a5f3'
down_revision: Union[str, None] = '3f1c2a9d7b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE OR REPLACE FUNCTION notify_table_change()
        RETURNS TRIGGER AS $$
        BEGIN
            IF TG_OP = 'DELETE' THEN
                PERFORM pg_notify('table_changes', json_build_object(
                    'table', TG_TABLE_NAME,
                    'op', TG_OP,
                    'user_id', OLD.user_id
                )::text);
                RETURN OLD;
            END IF;

            PERFORM pg_notify('table_changes', json_build_object(
                'table', TG_TABLE_NAME,
                'op', TG_OP,
                'user_id', NEW.user_id
            )::text);

            IF TG_OP = 'UPDATE' AND OLD.user_id IS DISTINCT FROM NEW.user_id THEN
                PERFORM pg_notify('table_changes', json_build_object(
                    'table', TG_TABLE_NAME,
                    'op', TG_OP,
                    'user_id', OLD.user_id
                )::text);
            END IF;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)

    op.execute("""
        CREATE TRIGGER admin_messages_change_notify
            AFTER INSERT OR UPDATE OR DELETE ON admin_messages
            FOR EACH ROW
            EXECUTE FUNCTION notify_table_change();
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS admin_messages_change_notify ON admin_messages;")
    op.execute("DROP FUNCTION IF EXISTS notify_table_change;")
