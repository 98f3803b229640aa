from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from common.audit import create_audit_log


class Command(BaseCommand):
    help = "Approve (or with --revoke, suspend) a user account by username or e-mail."

    def add_arguments(self, parser):
        parser.add_argument("identifier", help="Username or e-mail address.")
        parser.add_argument(
            "--revoke",
            action="store_true",
            help="Set the account back to pending approval.",
        )

    def handle(self, *args, **options):
        User = get_user_model()
        identifier = options["identifier"].strip()

        lookup = {"email__iexact": identifier} if "@" in identifier else {"username": identifier}
        try:
            user = User.objects.get(**lookup)
        except User.DoesNotExist:
            raise CommandError(f"No user found for '{identifier}'.")

        approved = not options["revoke"]
        if user.is_approved == approved:
            state = "approved" if approved else "pending"
            self.stdout.write(self.style.WARNING(f"{user.username} is already {state}."))
            return

        before = {"is_approved": user.is_approved}
        user.is_approved = approved
        user.save(update_fields=["is_approved"])
        create_audit_log(
            action="user.approve" if approved else "user.revoke",
            entity="user",
            entity_id=user.id,
            before_snapshot=before,
            after_snapshot={"is_approved": approved},
        )

        verb = "Approved" if approved else "Revoked approval for"
        self.stdout.write(self.style.SUCCESS(f"{verb} {user.username}."))
