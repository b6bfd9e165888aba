"""
Management command to provision a tenant for a user.

Creates the user if asked to, then creates the tenant through
TenantService so the owner membership, default tenant and audit entry
are set up exactly as for an API signup.
"""
from django.core.management.base import BaseCommand, CommandError

from apps.core.exceptions import SitelineException
from apps.rbac.models import User
from apps.tenants.services import TenantService


class Command(BaseCommand):
    help = 'Create a tenant owned by the given user'

    def add_arguments(self, parser):
        parser.add_argument(
            '--tenant-name',
            type=str,
            required=True,
            help='Display name of the new tenant',
        )
        parser.add_argument(
            '--email',
            type=str,
            required=True,
            help='Owner email address',
        )
        parser.add_argument(
            '--create-user',
            action='store_true',
            help='Create user if they do not exist (requires --password)',
        )
        parser.add_argument('--password', type=str, help='Password for a new user')
        parser.add_argument('--first-name', type=str, default='')
        parser.add_argument('--last-name', type=str, default='')

    def handle(self, *args, **options):
        email = options['email']

        if options['create_user'] and not options.get('password'):
            raise CommandError('--password is required when using --create-user')

        user = User.objects.by_email(email)
        if user is None:
            if not options['create_user']:
                raise CommandError(
                    f'User not found: {email}\n'
                    f'Use --create-user --password=<password> to create the user'
                )
            user = User.objects.create_user(
                email=email,
                password=options['password'],
                first_name=options['first_name'],
                last_name=options['last_name'],
            )
            self.stdout.write(self.style.SUCCESS(f'Created user: {user.email}'))
        elif not user.is_active:
            raise CommandError(f'User is deactivated: {email}')

        try:
            tenant = TenantService.create_tenant(options['tenant_name'], user)
        except SitelineException as exc:
            raise CommandError(exc.message)

        self.stdout.write(
            self.style.SUCCESS(f'Created tenant {tenant.name} ({tenant.slug}) owned by {user.email}')
        )
        self.stdout.write(f'Tenant ID: {tenant.id}')
