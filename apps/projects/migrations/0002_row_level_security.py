# Row-level security for tenant-owned tables (PostgreSQL only)

from django.db import migrations

TENANT_TABLES = ('projects', 'tasks')

ENABLE_SQL = """
ALTER TABLE {table} ENABLE ROW LEVEL SECURITY;
ALTER TABLE {table} FORCE ROW LEVEL SECURITY;
CREATE POLICY {table}_tenant_isolation ON {table}
    USING (
        tenant_id::text = current_setting('app.current_tenant', true)
        OR current_setting('app.rls_bypass', true) = 'on'
    )
    WITH CHECK (
        tenant_id::text = current_setting('app.current_tenant', true)
        OR current_setting('app.rls_bypass', true) = 'on'
    );
"""

DISABLE_SQL = """
DROP POLICY IF EXISTS {table}_tenant_isolation ON {table};
ALTER TABLE {table} NO FORCE ROW LEVEL SECURITY;
ALTER TABLE {table} DISABLE ROW LEVEL SECURITY;
"""


def enable_rls(apps, schema_editor):
    if schema_editor.connection.vendor != 'postgresql':
        return
    for table in TENANT_TABLES:
        schema_editor.execute(ENABLE_SQL.format(table=table))


def disable_rls(apps, schema_editor):
    if schema_editor.connection.vendor != 'postgresql':
        return
    for table in TENANT_TABLES:
        schema_editor.execute(DISABLE_SQL.format(table=table))


class Migration(migrations.Migration):

    dependencies = [
        ('projects', '0001_initial'),
    ]

    operations = [
        migrations.RunPython(enable_rls, disable_rls),
    ]
