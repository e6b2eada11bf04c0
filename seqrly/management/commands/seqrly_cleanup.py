import logging

from django.core.management.base import BaseCommand

from seqrly.store import get_store


logger = logging.getLogger(__name__)


class Command(BaseCommand):

    help = "Remove expired OpenID nonces and associations from the configured store."

    def add_arguments(self, parser):
        parser.add_argument(
            "--reset",
            action="store_true",
            help="Drop every nonce and association instead of only the expired ones.",
        )

    def handle(self, *args, **options):
        store = get_store()

        if options["reset"]:
            store.reset()
            logger.info("Reset OpenID store %s", store.__class__.__name__)
            self.stdout.write("Reset the OpenID store.")
            return

        nonces = store.cleanupNonces()
        associations = store.cleanupAssociations()
        logger.info("Removed %d nonces and %d associations", nonces, associations)
        self.stdout.write("Removed %d expired nonces and %d expired associations." % (nonces, associations))
