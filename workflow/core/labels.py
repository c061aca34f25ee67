"""
Status label guard.

Maps internal status, action and source codes to a closed set of
pre-approved, translated labels. Raw codes never reach user-facing output:
anything outside the table renders as the "unknown" label.
"""
from django.utils.translation import gettext, gettext_lazy as _

from workflow.core.statuses import (
    Action,
    LegStatus,
    OrderStatus,
    ProposalStatus,
    normalize,
)

UNKNOWN_STATUS_LABEL = _('Unknown status')
UNKNOWN_ACTION_LABEL = _('Action unavailable')

# Order labels win over leg/proposal labels for shared codes
STATUS_LABELS = {}
for _choices in (ProposalStatus, LegStatus, OrderStatus):
    STATUS_LABELS.update({member.value: member.label for member in _choices})

ACTION_LABELS = {member.value: member.label for member in Action}

SOURCE_LABELS = {
    'progress': _('Live trip progress'),
    'assignment': _('Assignment record'),
    'unknown': _('Not started yet'),
}

SLOT_UNAVAILABLE_LABELS = {
    'capacity_exhausted': _('All trucks for this freight have already been taken.'),
    'order_not_reservable': _('This freight is no longer accepting trucks.'),
    'already_assigned': _('You already hold a truck slot on this freight.'),
    'concurrent_update': _('Another truck took this slot first. Refresh and try again.'),
    'not_releasable': _('This truck slot can no longer be released.'),
}
DEFAULT_SLOT_UNAVAILABLE_LABEL = _('No truck slot is available on this freight.')

NOTICE_LABELS = {
    'state_inconsistent': _('This freight is being synchronised. Refresh and try again.'),
    'price_unavailable': _('Price unavailable'),
    'below_minimum_price': _('Price below the minimum freight rate reference.'),
}


def status_label(code):
    """Approved label for a status code; never the raw code."""
    return STATUS_LABELS.get(normalize(code), UNKNOWN_STATUS_LABEL)


def action_label(action):
    return ACTION_LABELS.get(normalize(action), UNKNOWN_ACTION_LABEL)


def source_label(source):
    return SOURCE_LABELS.get(str(source or '').strip().lower(), SOURCE_LABELS['unknown'])


def blocked_action_message(current_status, action=None, target_status=None):
    """
    User-facing text naming the current status and the blocked action,
    built from approved labels only.
    """
    status_text = str(status_label(current_status))
    if action:
        return gettext('"%(action)s" is not available while the freight is "%(status)s".') % {
            'action': str(action_label(action)),
            'status': status_text,
        }
    if target_status:
        return gettext('The freight cannot move from "%(status)s" to "%(target)s".') % {
            'status': status_text,
            'target': str(status_label(target_status)),
        }
    return gettext('This change is not allowed while the freight is "%(status)s".') % {
        'status': status_text,
    }


def slot_unavailable_message(reason):
    return SLOT_UNAVAILABLE_LABELS.get(reason, DEFAULT_SLOT_UNAVAILABLE_LABEL)


def notice_label(code):
    return NOTICE_LABELS.get(code, UNKNOWN_STATUS_LABEL)


def approved_labels():
    """Every label this guard can emit, rendered in the active language."""
    labels = set()
    for table in (STATUS_LABELS, ACTION_LABELS, SOURCE_LABELS, SLOT_UNAVAILABLE_LABELS, NOTICE_LABELS):
        labels.update(str(label) for label in table.values())
    labels.update({
        str(UNKNOWN_STATUS_LABEL),
        str(UNKNOWN_ACTION_LABEL),
        str(DEFAULT_SLOT_UNAVAILABLE_LABEL),
    })
    return labels


def is_approved_label(text):
    return str(text) in approved_labels()
