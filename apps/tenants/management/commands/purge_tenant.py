"""
Management command to hard-delete a tenant and every row it owns.

Meant for test environments and cleanup tooling. Audit entries are kept;
they reference the tenant by id only.
"""
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from apps.core.storage import registered_models, storage_call
from apps.rbac.audit import AuditRecorder
from apps.rbac.models import Membership
from apps.rbac.policy import as_uuid
from apps.tenants.models import SubscriptionEvent, Tenant


class Command(BaseCommand):
    help = 'Permanently delete a tenant and all of its data (requires --confirm <slug>)'

    def add_arguments(self, parser):
        parser.add_argument('tenant', type=str, help='Tenant ID or slug')
        parser.add_argument(
            '--confirm',
            type=str,
            required=True,
            help='Slug of the tenant, repeated to confirm the purge',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Report what would be deleted without deleting',
        )

    def handle(self, *args, **options):
        tenant = self._get_tenant(options['tenant'])

        if options['confirm'] != tenant.slug:
            raise CommandError(
                f"--confirm must match the tenant slug '{tenant.slug}'"
            )

        counts = {}
        with storage_call(tenant.id, bypass_rls=True), transaction.atomic():
            for entity_type, model in reversed(registered_models()):
                queryset = model.objects.filter(tenant_id=tenant.id)
                counts[entity_type] = queryset.count()
                if not options['dry_run']:
                    queryset.delete()

            memberships = Membership.objects.filter(tenant_id=tenant.id)
            events = SubscriptionEvent.objects.filter(tenant_id=tenant.id)
            counts['membership'] = memberships.count()
            counts['subscription_event'] = events.count()

            if not options['dry_run']:
                memberships.delete()
                events.delete()
                Tenant.objects.filter(id=tenant.id).delete()
                AuditRecorder.record(
                    tenant_id=tenant.id,
                    actor_user_id=None,
                    action='tenant.purged',
                    entity_type='tenant',
                    entity_id=tenant.id,
                    metadata={'slug': tenant.slug, 'deleted': counts},
                )

        for label, count in counts.items():
            self.stdout.write(f"  {label}: {count}")

        if options['dry_run']:
            self.stdout.write(self.style.WARNING(f"Dry run: nothing deleted for {tenant.slug}"))
        else:
            self.stdout.write(self.style.SUCCESS(f"Purged tenant {tenant.slug} ({tenant.id})"))

    @staticmethod
    def _get_tenant(identifier):
        tenant_id = as_uuid(identifier)
        tenant = None
        if tenant_id is not None:
            tenant = Tenant.objects.filter(id=tenant_id).first()
        if tenant is None:
            tenant = Tenant.objects.by_slug(identifier)
        if tenant is None:
            raise CommandError(f"Tenant not found: {identifier}")
        return tenant
