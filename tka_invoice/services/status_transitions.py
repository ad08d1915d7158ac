from datetime import datetime


class StatusTransitionError(Exception):
    """Raised when an invoice cannot move to the requested status."""
    status_code = 409

    def __init__(self, message, status_code=None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class InvoiceStatusTransition:
    """Service class for managing invoice status transitions."""

    DRAFT = 'draft'
    FINALIZED = 'finalized'
    PAID = 'paid'
    CANCELLED = 'cancelled'

    VALID_STATUSES = [DRAFT, FINALIZED, PAID, CANCELLED]

    # Paid and cancelled are terminal
    TRANSITIONS = {
        DRAFT: [FINALIZED, CANCELLED],
        FINALIZED: [PAID, CANCELLED],
        PAID: [],
        CANCELLED: [],
    }

    STATUS_MESSAGES = {
        FINALIZED: 'Invoice has been finalized.',
        PAID: 'Invoice has been marked as paid.',
        CANCELLED: 'Invoice has been cancelled.',
    }

    @classmethod
    def can_transition_to(cls, invoice, new_status):
        """
        Check if status transition is allowed.

        Args:
            invoice: Invoice object
            new_status: Desired new status

        Returns:
            tuple: (can_change: bool, error_message: str|None)
        """
        if new_status not in cls.VALID_STATUSES:
            return False, f'Invalid status: {new_status}'

        if invoice.status == new_status:
            return False, f'Invoice is already {new_status}'

        if new_status not in cls.TRANSITIONS.get(invoice.status, []):
            return False, f'Cannot change status from {invoice.status} to {new_status}'

        if new_status == cls.FINALIZED and not invoice.lines:
            return False, 'Cannot finalize an invoice without lines'

        return True, None

    @classmethod
    def transition_invoice_status(cls, invoice, new_status):
        """
        Transition invoice to new status with validation.

        Args:
            invoice: Invoice object
            new_status: New status to set

        Returns:
            str: Success message

        Raises:
            StatusTransitionError: if the transition is not allowed
        """
        can_change, error_msg = cls.can_transition_to(invoice, new_status)
        if not can_change:
            status_code = 400 if new_status not in cls.VALID_STATUSES else None
            raise StatusTransitionError(error_msg, status_code=status_code)

        invoice.status = new_status
        invoice.updated_at = datetime.utcnow()

        return cls.STATUS_MESSAGES.get(new_status, 'Status has been changed.')

    @classmethod
    def get_valid_transitions(cls, current_status):
        """
        Get list of valid status transitions from current status.

        Args:
            current_status: Current invoice status

        Returns:
            list: List of valid status transitions
        """
        return list(cls.TRANSITIONS.get(current_status, []))

    @classmethod
    def get_status_display_name(cls, status):
        display_names = {
            cls.DRAFT: 'Draft',
            cls.FINALIZED: 'Finalized',
            cls.PAID: 'Paid',
            cls.CANCELLED: 'Cancelled',
        }
        return display_names.get(status, status)
