import logging

from django.dispatch import Signal, receiver

logger = logging.getLogger(__name__)

# Sent after the escrow transaction commits. Every signal carries `project`
# and `actor`; the extra keyword arguments are listed next to each one.
escrow_funded = Signal()        # account, amount
release_requested = Signal()    # release_request
release_approved = Signal()     # release_request, account
release_rejected = Signal()     # release_request
release_withdrawn = Signal()    # release_request

SIGNAL_NAMES = {
    escrow_funded: 'escrow_funded',
    release_requested: 'release_requested',
    release_approved: 'release_approved',
    release_rejected: 'release_rejected',
    release_withdrawn: 'release_withdrawn',
}


@receiver(list(SIGNAL_NAMES))
def log_escrow_event(sender, signal, project, actor, **kwargs):
    release_request = kwargs.get('release_request')
    logger.info(
        f"Escrow event {SIGNAL_NAMES[signal]} on project {project.pk}",
        extra={
            'event': SIGNAL_NAMES[signal],
            'project_id': project.pk,
            'actor_id': actor.pk,
            'release_id': release_request.pk if release_request else None,
        },
    )
