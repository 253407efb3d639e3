from ..permissions import can_access
from .audit_helper import (acknowledge_review, flag_critical_entries,
                           get_invoice_audit_entries, is_critical,
                           list_audit_entries, log_action, record)
from .deletion import request_deletion
from .membership import (ResolvedMembership, add_member,
                         authorize_membership_change, check_access, companies_for,
                         create_company, deactivate_company, invite_member,
                         is_root_admin, remove_member, require_access,
                         resolve_membership, update_member_role)
from .numbering import (allocate_invoice_number, build_prefix,
                        client_abbreviation, is_invoice_number_taken,
                        save_with_unique_number,
                        validate_invoice_number_format)
from .results import DeletionOutcome, Outcome
from .workflow import (approve_invoice, cancel_invoice, create_invoice,
                       issue_invoice, reject_invoice, revert_invoice,
                       submit_invoice, transition_invoice,
                       update_draft_invoice)
